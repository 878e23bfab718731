"""SecureShift workflow — job lifecycle orchestration for security-guard staffing."""

__version__ = "0.1.0"
