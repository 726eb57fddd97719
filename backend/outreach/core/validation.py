"""
Backend Validation Module
Validates the configured storage/audit/rate-limit/executor backends on startup
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from outreach.core.config import Settings

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "supabase")
AUDIT_BACKENDS = ("logging", "redis")
RATE_LIMIT_BACKENDS = ("memory", "redis")


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    backend: str
    setting: str
    is_valid: bool
    message: str


class BackendValidator:
    """
    Checks that every selected backend has the settings it needs before the
    API or the worker starts.
    """

    def __init__(self, settings: Settings, strict: bool = False):
        """
        Args:
            settings: Application settings
            strict: If True, treat warnings as errors
        """
        self.settings = settings
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        self.results = []
        s = self.settings

        if s.storage_backend not in STORAGE_BACKENDS:
            self._add_error("storage", "STORAGE_BACKEND", f"Unknown storage backend '{s.storage_backend}'")
        elif s.storage_backend == "supabase":
            for setting, value in (("SUPABASE_URL", s.supabase_url), ("SUPABASE_SERVICE_KEY", s.supabase_service_key)):
                if value:
                    self._add_success("storage", setting, "Supabase storage configured")
                else:
                    self._add_error("storage", setting, f"Supabase storage requires {setting} to be set")
        else:
            self._add_warning("storage", "STORAGE_BACKEND", "In-memory storage, state is lost on restart")

        if s.audit_backend not in AUDIT_BACKENDS:
            self._add_error("audit", "AUDIT_BACKEND", f"Unknown audit backend '{s.audit_backend}'")
        elif s.audit_backend == "redis" and not s.redis_url:
            self._add_error("audit", "REDIS_URL", "Redis audit events require REDIS_URL to be set")
        else:
            self._add_success("audit", "AUDIT_BACKEND", f"Audit backend '{s.audit_backend}' configured")

        if s.rate_limit_backend not in RATE_LIMIT_BACKENDS:
            self._add_error("rate_limits", "RATE_LIMIT_BACKEND", f"Unknown rate-limit backend '{s.rate_limit_backend}'")
        elif s.rate_limit_backend == "redis" and not s.redis_url:
            self._add_error("rate_limits", "REDIS_URL", "Redis rate-limit usage requires REDIS_URL to be set")
        elif s.rate_limit_backend == "memory" and s.storage_backend == "supabase":
            self._add_error(
                "rate_limits", "RATE_LIMIT_BACKEND",
                "Supabase storage requires RATE_LIMIT_BACKEND=redis: in-memory usage resets on "
                "restart and is not shared between the API and the worker"
            )
        else:
            self._add_success("rate_limits", "RATE_LIMIT_BACKEND", f"Rate-limit backend '{s.rate_limit_backend}' configured")

        if s.executor_backend == "dry_run":
            self._add_warning("executor", "EXECUTOR_BACKEND", "Dry-run executor, no actions are performed")

        errors = [r for r in self.results if not r.is_valid]
        return not errors, self.results

    def _add_success(self, backend: str, setting: str, message: str):
        self.results.append(ValidationResult(backend, setting, True, message))

    def _add_error(self, backend: str, setting: str, message: str):
        self.results.append(ValidationResult(backend, setting, False, message))

    def _add_warning(self, backend: str, setting: str, message: str):
        self.results.append(ValidationResult(
            backend, setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  ✗ [{r.backend}] {r.message}")
            elif r.message.startswith("WARNING"):
                logger.warning(f"  ⚠ [{r.backend}] {r.message}")
            else:
                logger.info(f"  ✓ [{r.backend}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None
        lines = ["Backend configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_backends_on_startup(settings: Settings, strict: bool = False) -> None:
    """
    Validate backends at startup.

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = BackendValidator(settings, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("Backend configuration validated")
