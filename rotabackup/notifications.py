"""
Notifications for backup runs.

Email delivery is simulated by appending messages to a text file.
"""

import logging
from datetime import datetime
from pathlib import Path


logger = logging.getLogger(__name__)


class EmailFileNotifier:
    """Writes notification emails to a file instead of sending them."""

    def __init__(self, email_file, recipient: str = ''):
        self.email_file = Path(email_file)
        self.recipient = recipient

    def send(self, subject: str, body: str):
        """
        Append a notification. Fire-and-forget: delivery failures are logged,
        never raised.
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        message = (
            "-----\n"
            f"To: {self.recipient}\n"
            f"Subject: {subject}\n"
            f"Time: {timestamp}\n"
            "\n"
            f"{body}\n"
            "-----\n"
        )

        try:
            self.email_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.email_file, 'a') as f:
                f.write(message)
        except OSError as e:
            logger.warning(f"Failed to write notification '{subject}' to {self.email_file}: {e}")
