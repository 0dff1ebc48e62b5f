"""SCORM 2004 package testing harness served as JSON-RPC tools over stdio."""

__version__ = "1.0.0"
