"""
AXELbg Login
HTTP form login that turns a username/password into session cookies
"""
from typing import Optional
import logging
import re

import requests

from ..models.stream import SessionCredentials
from ..sources.transport import USER_AGENT

logger = logging.getLogger(__name__)

_UID_RE = re.compile(r"uid=(\d+)")
_PASS_RE = re.compile(r"pass=([a-f0-9]{32})")


class LoginError(Exception):
    """Raised when the site rejects the login or cannot be reached"""


class AxelLoginClient:
    LOGIN_URL = "https://axelbg.net/takelogin.php"

    def __init__(self, timeout: float = 15.0):
        self.timeout = float(timeout)

    @staticmethod
    def _cookie_headers(response) -> list:
        raw = getattr(response, "raw", None)
        headers = getattr(raw, "headers", None)
        getter = getattr(headers, "get_all", None) or getattr(headers, "getlist", None)
        if callable(getter):
            values = getter("Set-Cookie") or []
            if values:
                return list(values)
        single = response.headers.get("Set-Cookie", "") if response.headers else ""
        return [single] if single else []

    @staticmethod
    def parse_session_cookies(set_cookie_headers) -> Optional[SessionCredentials]:
        uid, password = "", ""
        for header in set_cookie_headers or []:
            uid_match = _UID_RE.search(header)
            pass_match = _PASS_RE.search(header)
            if uid_match:
                uid = uid_match.group(1)
            if pass_match:
                password = pass_match.group(1)
        credentials = SessionCredentials(uid=uid, password=password)
        return credentials if credentials.is_complete else None

    def login(self, username: str, password: str) -> SessionCredentials:
        """Post the login form without following redirects; raises LoginError on failure"""
        if not str(username or "").strip() or not str(password or "").strip():
            raise LoginError("Missing username or password")
        try:
            response = requests.post(
                self.LOGIN_URL,
                data={"username": username, "password": password},
                headers={"User-Agent": USER_AGENT},
                allow_redirects=False,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("[Axel Login] Error: %s", e)
            raise LoginError(str(e)) from e
        if not (200 <= response.status_code < 400):
            raise LoginError(f"Login failed with status {response.status_code}")

        credentials = self.parse_session_cookies(self._cookie_headers(response))
        if credentials is None:
            # Session cookies are sometimes already folded into the jar.
            jar = getattr(response, "cookies", None)
            uid = jar.get("uid", "") if jar is not None else ""
            secret = jar.get("pass", "") if jar is not None else ""
            credentials = self.parse_session_cookies([f"uid={uid}", f"pass={secret}"])
        if credentials is None:
            logger.info("[Axel Login] Failed, no session cookies")
            raise LoginError("Wrong username or password")
        logger.info("[Axel Login] Success: uid=%s", credentials.uid)
        return credentials
