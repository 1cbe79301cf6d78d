#!/usr/bin/env python3
"""
RPKI ROV Error Handling

Every failure the decoders, the relying-party client and the tool layer
report is an RPKIError subclass with a stable `kind`. The kinds map onto
retry policy:

- MalformedEncoding, UnsupportedAlgorithm, InvalidPrefixEncoding:
  the object is broken; never retried
- DigestMismatch, SignatureInvalid: cryptographic failure; the whole
  object is rejected
- CertificateExpired, CertificateNotYetValid: only a reissued object helps
- RelyingPartyUnavailable: transient; safe to retry with backoff

Console rendering uses the symbols below:
  "✓ msg" info, "⚠ msg" warning, "✗ msg" error, "✗ Fatal: msg" fatal
"""

import logging
from functools import wraps
from ipaddress import AddressValueError, NetmaskValueError
from pathlib import Path
from typing import Any, Dict, Optional, Union


class ErrorSeverity:
    """Severity of a reported error; selects console symbol and exit code"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class RPKIError(Exception):
    """Base exception for every failure the RPKI ROV core reports"""

    kind = "RPKIError"
    retryable = False

    def __init__(self, message: str, offset: Optional[int] = None,
                 severity: str = ErrorSeverity.ERROR,
                 guidance: Optional[str] = None):
        self.message = message
        self.offset = offset
        self.severity = severity
        self.guidance = guidance
        super().__init__(self._render())

    def _render(self) -> str:
        if self.offset is None:
            return f"{self.kind}: {self.message}"
        return f"{self.kind}: {self.message} (at offset {self.offset})"

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used by the tool layer"""
        data = {'kind': self.kind, 'message': self.message}
        if self.offset is not None:
            data['offset'] = self.offset
        return data


class MalformedEncoding(RPKIError):
    """Structural ASN.1/DER or CMS violation"""
    kind = "MalformedEncoding"


class UnsupportedAlgorithm(RPKIError):
    """Digest or signature algorithm outside the allow-list"""
    kind = "UnsupportedAlgorithm"


class DigestMismatch(RPKIError):
    """Recomputed content digest differs from the signed message digest"""
    kind = "DigestMismatch"


class SignatureInvalid(RPKIError):
    """Signature does not verify against the embedded certificate key"""
    kind = "SignatureInvalid"


class CertificateExpired(RPKIError):
    """Embedded certificate notAfter lies in the past"""
    kind = "CertificateExpired"


class CertificateNotYetValid(RPKIError):
    """Embedded certificate notBefore lies in the future"""
    kind = "CertificateNotYetValid"


class InvalidPrefixEncoding(RPKIError):
    """A ROA prefix entry is inconsistent; rejects the whole object"""
    kind = "InvalidPrefixEncoding"


class RelyingPartyUnavailable(RPKIError):
    """VRP snapshot or status could not be obtained from the relying party"""
    kind = "RelyingPartyUnavailable"
    retryable = True

    def __init__(self, message: str, endpoint: Optional[str] = None,
                 status_code: Optional[int] = None, **kwargs):
        self.endpoint = endpoint
        self.status_code = status_code
        kwargs.setdefault('guidance', "Check that the relying party is running and reachable, then retry")
        super().__init__(message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.endpoint:
            data['endpoint'] = self.endpoint
        if self.status_code is not None:
            data['statusCode'] = self.status_code
        return data


class FileNotFound(RPKIError):
    """Input file does not exist or is not readable"""
    kind = "FileNotFound"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('guidance', "Check that the file path is correct and the file exists")
        super().__init__(message, **kwargs)


class ValidationError(RPKIError):
    """Caller-supplied parameter is out of range or unparseable"""
    kind = "ValidationError"

    def __init__(self, message: str, parameter: str = None, guidance: str = None):
        self.parameter = parameter
        super().__init__(message, guidance=guidance)


class ConfigurationError(RPKIError):
    """No usable relying-party source or an invalid setting"""
    kind = "ConfigurationError"


class ErrorFormatter:
    """Renders errors for the terminal"""

    SYMBOLS = {
        ErrorSeverity.INFO: "✓",
        ErrorSeverity.WARNING: "⚠",
        ErrorSeverity.ERROR: "✗",
        ErrorSeverity.FATAL: "✗ Fatal:",
    }

    # Guidance for exceptions that escape the RPKIError taxonomy
    BUILTIN_GUIDANCE = (
        (PermissionError, "Permission denied", "Check read permissions on the input file"),
        (OSError, "I/O error", "Check the path and that the filesystem is readable"),
        (ValueError, "Invalid input", "Check the command arguments"),
    )

    @classmethod
    def format_message(cls, message: str, severity: str = ErrorSeverity.ERROR,
                       guidance: Optional[str] = None) -> str:
        lines = [f"{cls.SYMBOLS.get(severity, '•')} {message}"]
        if guidance:
            lines.append(f"  Suggestion: {guidance}")
        return "\n".join(lines)

    @classmethod
    def format_error(cls, error: BaseException) -> str:
        """One message per error; internals of unexpected errors stay hidden"""
        if isinstance(error, RPKIError):
            return cls.format_message(str(error), error.severity, error.guidance)

        if isinstance(error, KeyboardInterrupt):
            return cls.format_message("Operation interrupted by user", ErrorSeverity.WARNING)

        for error_class, label, guidance in cls.BUILTIN_GUIDANCE:
            if isinstance(error, error_class):
                return cls.format_message(f"{label}: {error}", ErrorSeverity.ERROR, guidance)

        return cls.format_message("Unexpected error occurred", ErrorSeverity.ERROR,
                                  "Run again with --verbose and check the log")


class ParameterValidator:
    """Validation of CLI and HTTP parameters"""

    MAX_ASN = 4294967295

    @staticmethod
    def validate_timeout(timeout: float, parameter_name: str = "timeout") -> float:
        if timeout <= 0:
            raise ValidationError(
                f"{parameter_name} must be a positive number of seconds, got {timeout}",
                parameter_name,
                "Use a positive number of seconds (e.g., 30)"
            )
        if timeout > 3600:
            logging.getLogger('rpki-rov.validation').warning(
                f"{parameter_name} of {timeout}s allows very long relying-party requests"
            )
        return timeout

    @staticmethod
    def validate_file_exists(file_path: Union[str, Path], parameter_name: str = "file") -> Path:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFound(f"{parameter_name} does not exist: {path}")
        if not path.is_file():
            raise FileNotFound(f"{parameter_name} is not a regular file: {path}",
                               guidance="Provide a path to a file, not a directory")
        return path

    @classmethod
    def validate_as_number(cls, as_number: Union[str, int], parameter_name: str = "asn") -> int:
        """Accepts 64512, "64512" or "AS64512"; 32-bit range per RFC 6793"""
        if isinstance(as_number, int) and not isinstance(as_number, bool):
            as_num = as_number
        else:
            text = str(as_number).strip() if isinstance(as_number, str) else ""
            if text[:2].upper() == 'AS':
                text = text[2:]
            if not (text.isascii() and text.isdigit()):
                raise ValidationError(f"AS number must be an integer, got {as_number!r}",
                                      parameter_name,
                                      "Use a numeric AS number (e.g., 64512 or AS64512)")
            as_num = int(text)

        if not 0 <= as_num <= cls.MAX_ASN:
            raise ValidationError(f"AS number {as_num} outside 0-{cls.MAX_ASN}",
                                  parameter_name, "Use a valid 32-bit AS number")
        return as_num

    @staticmethod
    def validate_prefix(prefix: str, parameter_name: str = "prefix"):
        """Parse a CIDR prefix into an IPPrefix, rejecting host bits"""
        from rpki_rov.models import IPPrefix

        try:
            return IPPrefix.parse(prefix)
        except (AddressValueError, NetmaskValueError, ValueError, TypeError) as e:
            raise ValidationError(
                f"Invalid prefix '{prefix}': {e}",
                parameter_name,
                "Use canonical CIDR notation (e.g., 192.0.2.0/24 or 2001:db8::/32)"
            )


EXIT_CODES = {
    ErrorSeverity.FATAL: 2,
    ErrorSeverity.ERROR: 1,
}


def handle_errors(logger_name: str = None):
    """
    Wrap a `cmd_*` function so failures become printed messages and exit codes.

    Exit codes: 0 success, 1 error, 2 fatal configuration error, 130 interrupt.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(logger_name or f'rpki-rov.{func.__name__}')
            try:
                return func(*args, **kwargs)
            except RPKIError as e:
                logger.error(f"{func.__name__} failed: {e}")
                print(ErrorFormatter.format_error(e))
                return EXIT_CODES.get(e.severity, 0)
            except KeyboardInterrupt as e:
                logger.info(f"{func.__name__} interrupted")
                print(ErrorFormatter.format_error(e))
                return 130
            except Exception as e:
                logger.exception(f"Unexpected error in {func.__name__}: {e}")
                print(ErrorFormatter.format_error(e))
                return 1

        return wrapper
    return decorator


def print_warning(message: str, guidance: str = None):
    print(ErrorFormatter.format_message(message, ErrorSeverity.WARNING, guidance))


__all__ = [
    'ErrorSeverity', 'RPKIError', 'MalformedEncoding', 'UnsupportedAlgorithm',
    'DigestMismatch', 'SignatureInvalid', 'CertificateExpired', 'CertificateNotYetValid',
    'InvalidPrefixEncoding', 'RelyingPartyUnavailable', 'FileNotFound',
    'ValidationError', 'ConfigurationError', 'ErrorFormatter', 'ParameterValidator',
    'handle_errors', 'print_warning'
]
