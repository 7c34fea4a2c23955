"""
tunnelctl - bootstrap & lifecycle supervisor for a reverse tunneling client.

Packages:
- bootstrap: encrypted address-override payload + immutable run options
- config:    schema, config-file parser, semantic validation, resolver
- runtime:   lifecycle controller, signal hub, supervisor, app entry
- service:   tunneling client service contract + control-session service
- logging:   stream loggers, formatters, per-instance log files
"""

__version__ = "0.1.0"
