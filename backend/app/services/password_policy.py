"""Password strength policy.

Validation is pure and never raises. Character classes are explicit ASCII
sets, so the result does not depend on the process locale.
"""
from dataclasses import dataclass, field
import string

MIN_PASSWORD_LENGTH = 8
PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?`~"

COMMON_PASSWORDS = frozenset({
    "password", "password1", "password12", "password123", "password1234",
    "passw0rd", "p@ssw0rd", "p@ssword1", "123456", "1234567", "12345678",
    "123456789", "1234567890", "qwerty", "qwerty123", "qwertyuiop", "abc123",
    "abcd1234", "letmein", "letmein1", "welcome", "welcome1", "welcome123",
    "admin", "admin123", "administrator", "iloveyou", "monkey", "dragon",
    "sunshine", "football", "baseball", "master", "superman", "trustno1",
    "changeme", "secret123", "111111", "000000",
})


@dataclass(frozen=True)
class PolicyRule:
    code: str
    message: str


MIN_LENGTH_RULE = PolicyRule("min_length", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
UPPERCASE_RULE = PolicyRule("uppercase", "Password must contain at least one uppercase letter")
LOWERCASE_RULE = PolicyRule("lowercase", "Password must contain at least one lowercase letter")
DIGIT_RULE = PolicyRule("digit", "Password must contain at least one number")
SYMBOL_RULE = PolicyRule("symbol", "Password must contain at least one special character")
COMMON_PASSWORD_RULE = PolicyRule("common_password", "Password is too common, please choose a stronger one")
REUSED_PASSWORD_RULE = PolicyRule("reused_password", "New password must be different from the current password")


@dataclass(frozen=True)
class PasswordCheck:
    """Outcome of a policy check; ``violations`` keeps rule order."""

    violations: list[PolicyRule] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def messages(self) -> list[str]:
        return [rule.message for rule in self.violations]


def _contains_any(value: str, charset: str) -> bool:
    return any(char in charset for char in value)


def validate_password(password: str) -> PasswordCheck:
    """Check a candidate password against every policy rule."""
    violations = []

    if len(password) < MIN_PASSWORD_LENGTH:
        violations.append(MIN_LENGTH_RULE)
    if not _contains_any(password, string.ascii_uppercase):
        violations.append(UPPERCASE_RULE)
    if not _contains_any(password, string.ascii_lowercase):
        violations.append(LOWERCASE_RULE)
    if not _contains_any(password, string.digits):
        violations.append(DIGIT_RULE)
    if not _contains_any(password, PASSWORD_SYMBOLS):
        violations.append(SYMBOL_RULE)
    if password.casefold() in COMMON_PASSWORDS:
        violations.append(COMMON_PASSWORD_RULE)

    return PasswordCheck(violations=violations)
