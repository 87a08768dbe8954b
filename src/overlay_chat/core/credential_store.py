"""Keep Twitch tokens in the system keyring instead of settings.json.

Only the fields listed in SECRET_FIELDS are handled here. When no usable
keyring backend exists the tokens stay in settings.json, which is then
restricted to its owner.
"""

import logging
import os
import stat
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

SERVICE_NAME = "overlay-chat"

# TwitchSettings attributes that never go to settings.json when a keyring works
SECRET_FIELDS = ("access_token", "irc_token")

_PROBE_KEY = "_probe"

_keyring_available: bool | None = None


def keyring_available() -> bool:
    """Probe the keyring once with a write/read/delete cycle."""
    global _keyring_available
    if _keyring_available is None:
        _keyring_available = _probe_keyring()
    return _keyring_available


def _probe_keyring() -> bool:
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        backend = keyring.get_keyring()
        if isinstance(backend, FailKeyring):
            logger.info("No keyring backend; tokens stay in settings.json")
            return False

        keyring.set_password(SERVICE_NAME, _PROBE_KEY, "ok")
        works = keyring.get_password(SERVICE_NAME, _PROBE_KEY) == "ok"
        keyring.delete_password(SERVICE_NAME, _PROBE_KEY)
    except Exception as e:
        logger.info(f"Keyring unavailable: {e}")
        return False

    if works:
        logger.info(f"Storing tokens in {type(backend).__name__}")
    else:
        logger.info("Keyring probe returned the wrong value")
    return works


def read_secrets() -> dict[str, str]:
    """Return the stored, non-empty secrets keyed by field name."""
    if not keyring_available():
        return {}

    import keyring

    found = {}
    for name in SECRET_FIELDS:
        try:
            value = keyring.get_password(SERVICE_NAME, name)
        except Exception as e:
            logger.warning(f"Could not read {name} from keyring: {e}")
            continue
        if value:
            found[name] = value
    return found


def write_secrets(values: Mapping[str, str]) -> bool:
    """Store every given secret; empty values remove the entry.

    Returns False when the caller has to keep the secrets in settings.json.
    """
    if not keyring_available():
        return False

    import keyring
    from keyring.errors import PasswordDeleteError

    for name, value in values.items():
        try:
            if value:
                keyring.set_password(SERVICE_NAME, name, value)
            else:
                keyring.delete_password(SERVICE_NAME, name)
        except PasswordDeleteError:
            logger.debug(f"No keyring entry for {name}")
        except Exception as e:
            logger.warning(f"Could not store {name} in keyring: {e}")
            return False
    return True


def restrict_to_owner(path: Path) -> None:
    """chmod 600 a file that holds plaintext tokens."""
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError as e:
        logger.debug(f"Could not set permissions on {path}: {e}")
