"""
Session Manager

Provides:
- Per-host requests.Session management
- Per-host request serialization (thread-safety)
- Session cleanup
"""

import threading
from typing import Dict

import requests


class SessionManager:
    """
    Manages per-host requests.Session objects.

    Requests to the same host are serialized so two drivers sharing a manager
    never talk to one BMC at the same time.
    """

    def __init__(self, verify_ssl: bool = False):
        """
        Args:
            verify_ssl: Whether to verify SSL certificates (default False for self-signed)
        """
        self.sessions: Dict[str, requests.Session] = {}
        self.locks: Dict[str, threading.Lock] = {}  # Per-host locks for serialization
        self.lock_lock = threading.Lock()  # Lock for creating per-host locks
        self.verify_ssl = verify_ssl

        if not verify_ssl:
            import urllib3
            urllib3.disable_warnings()

    def _get_lock(self, host: str) -> threading.Lock:
        with self.lock_lock:
            if host not in self.locks:
                self.locks[host] = threading.Lock()
            return self.locks[host]

    def get_session(self, host: str) -> requests.Session:
        """
        Get or create a requests.Session for a host.

        Note: Not thread-safe for direct use; go through make_request().
        """
        with self.lock_lock:
            if host not in self.sessions:
                session = requests.Session()
                session.verify = self.verify_ssl
                self.sessions[host] = session
            return self.sessions[host]

    def has_session(self, host: str) -> bool:
        with self.lock_lock:
            return host in self.sessions

    def close_session(self, host: str):
        """Close and forget the session for a host. Missing sessions are ignored."""
        with self.lock_lock:
            session = self.sessions.pop(host, None)
        if session is not None:
            session.close()

    def close_all_sessions(self):
        with self.lock_lock:
            sessions = list(self.sessions.values())
            self.sessions.clear()
        for session in sessions:
            session.close()

    def make_request(self, method: str, url: str, host: str, **kwargs) -> requests.Response:
        """
        Make a thread-safe HTTP request with per-host serialization.

        Args:
            method: HTTP method (GET, POST, PATCH, PUT, DELETE)
            url: Full URL to request
            host: BMC host (used to get/create session)
            **kwargs: Additional arguments for requests.Session.request()

        Returns:
            requests.Response object
        """
        lock = self._get_lock(host)

        with lock:
            session = self.get_session(host)

            if 'timeout' not in kwargs:
                kwargs['timeout'] = (5, 30)  # 5s connect, 30s read

            if 'headers' not in kwargs or kwargs['headers'] is None:
                kwargs['headers'] = {}
            if 'Accept' not in kwargs['headers']:
                kwargs['headers']['Accept'] = 'application/json'

            return session.request(method, url, **kwargs)
