"""Local random password generation for vaults without a generator API."""
import secrets
import string
from typing import List

from rotator.errors import GenerationError
from .models import PasswordPolicy

_rng = secrets.SystemRandom()


def _character_classes(policy: PasswordPolicy) -> List[str]:
    classes = []
    if not policy.exclude_lowercase:
        classes.append(string.ascii_lowercase)
    if not policy.exclude_uppercase:
        classes.append(string.ascii_uppercase)
    if not policy.exclude_numbers:
        classes.append(string.digits)
    if not policy.exclude_punctuation:
        classes.append(string.punctuation)
    if policy.include_space:
        classes.append(" ")

    excluded = set(policy.exclude_characters)
    filtered = ["".join(c for c in cls if c not in excluded) for cls in classes]
    return [cls for cls in filtered if cls]


def generate_password(policy: PasswordPolicy) -> str:
    """Generate a password honouring ``policy``.

    Raises GenerationError when the policy leaves no usable characters or asks
    for more required character types than the length allows.
    """
    classes = _character_classes(policy)
    if not classes:
        raise GenerationError("Password policy excludes every character class")

    alphabet = "".join(classes)
    chars = []
    if policy.require_each_included_type:
        if policy.length < len(classes):
            raise GenerationError(
                f"Length {policy.length} cannot hold one of each of {len(classes)} character types"
            )
        chars = [secrets.choice(cls) for cls in classes]

    chars.extend(secrets.choice(alphabet) for _ in range(policy.length - len(chars)))
    _rng.shuffle(chars)
    return "".join(chars)
