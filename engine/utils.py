import logging
import os
import re

import colorlog

# -------------------------
# 1. Define Sensitive Patterns
# -------------------------
# Postback bodies and headers carry nonces and forwarded cookies.
# None of that should ever reach a log file.
SENSITIVE_PATTERNS = [
    # Nonces in form bodies or dict reprs (e.g., _nonce=abc, '_nonce': 'abc')
    (r'(_nonce[\'"]?\s*[=:]\s*[\'"]?)([^\s&\'",}]+)', r'\1[REDACTED]'),

    # Basic Key/Value pairs (e.g., password=secret)
    (r'(password|secret|key|token|auth)[=:\s]+(["\'])?([^\s"\']{3,})(["\'])?', r'\1=[REDACTED]'),

    # Forwarded cookie headers
    (r'(cookie[\'"]?\s*[=:]\s*[\'"]?)([^\'"\n}]+)', r'\1[REDACTED]'),

    # Authorization Headers
    (r'(Authorization:\s*Bearer\s+)([^\s]+)', r'\1[REDACTED]'),
]


# -------------------------
# 2. Create the Redacting Formatter
# -------------------------
class RedactingFormatter(colorlog.ColoredFormatter):
    """
    A log formatter that scrubs sensitive data before printing.
    """
    def format(self, record):
        original_msg = super().format(record)
        return redact(original_msg)


def redact(message: str) -> str:
    scrubbed = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        scrubbed = re.sub(pattern, replacement, scrubbed, flags=re.IGNORECASE)
    return scrubbed


# -------------------------
# 3. Setup Centralized Logging
# -------------------------
logger = logging.getLogger("postback")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))

handler = logging.StreamHandler()
handler.setFormatter(RedactingFormatter(
    "%(log_color)s[%(asctime)s] [%(levelname)-8s] [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
    reset=True,
    log_colors={
        'DEBUG':    'cyan',
        'INFO':     'green',
        'WARNING':  'yellow',
        'ERROR':    'red',
        'CRITICAL': 'red,bg_white',
    },
    secondary_log_colors={},
    style='%'
))

# Prevent duplicate handlers if re-imported
if not logger.handlers:
    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Returns a child logger for a specific component."""
    return logger.getChild(name)
