# eventcast/channels/message_cache.py

"""
Client-local fallback cache of message ids.

A JSON file mapping event id to ``{channel_id: message_id}``. It is only
consulted when an event's stored channel map has no entry; the stored map
remains the source of truth.
"""

import json
import logging
import os
import threading

logger = logging.getLogger(__name__)


class MessageIdCache:

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def _load(self):
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Message id cache at {self.path} is unreadable: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _store(self, data):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

    def lookup(self, event_id):
        """
        Return the cached value for an event, or None.

        Old cache files hold a bare message id string per event; callers
        normalize the value the same way as the stored channel map.
        """
        with self._lock:
            return self._load().get(str(event_id))

    def remember(self, event_id, channel_id, message_id):
        with self._lock:
            data = self._load()
            entry = data.get(str(event_id))
            if not isinstance(entry, dict):
                entry = {}
            entry[str(channel_id)] = str(message_id)
            data[str(event_id)] = entry
            self._store(data)

    def forget(self, event_id):
        with self._lock:
            data = self._load()
            if data.pop(str(event_id), None) is not None:
                self._store(data)
