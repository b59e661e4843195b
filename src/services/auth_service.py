"""Authentication service for dispatch backend token management."""
import os
import jwt
import requests
from datetime import datetime, timedelta
from typing import Optional
from dotenv import set_key
from loguru import logger
from ..configurations.config import Config

class AuthService:
    def __init__(self, base_url: str = None, username: str = None, password: str = None,
                 session: Optional[requests.Session] = None, env_file: str = '.env'):
        self.base_url = (base_url if base_url is not None else Config.DISPATCH_API_BASE_URL).rstrip('/')
        self.username = username if username is not None else Config.DISPATCH_USERNAME
        self.password = password if password is not None else Config.DISPATCH_PASSWORD
        self.session = session or requests.Session()
        self.env_file = env_file
        self._current_token = os.getenv('DISPATCH_TOKEN') or None
        self._token_expiry = self._get_token_expiry(self._current_token) if self._current_token else None
        logger.info("AuthService initialized for the dispatch backend")

    def _get_token_expiry(self, token: str) -> Optional[datetime]:
        """Extract expiry time from JWT token."""
        try:
            # Decode without verification to get expiry
            decoded = jwt.decode(token, options={"verify_signature": False})
            exp_timestamp = decoded.get('exp')
            if exp_timestamp:
                return datetime.fromtimestamp(exp_timestamp)
        except jwt.PyJWTError as e:
            logger.warning(f"Could not decode token expiry: {e}")
        return None

    def _is_token_expired(self) -> bool:
        """Check if current token is expired or will expire soon."""
        if not self._current_token or not self._token_expiry:
            return True

        # Consider token expired if it expires within 5 minutes
        buffer_time = timedelta(minutes=5)
        return datetime.now() + buffer_time >= self._token_expiry

    def _login_and_get_token(self) -> Optional[str]:
        """Login with the operator credentials and get a fresh token."""
        if not self.username or not self.password:
            logger.error("Operator credentials are not configured")
            return None

        try:
            url = f"{self.base_url}/auth/login"
            login_data = {
                'username': self.username,
                'password': self.password
            }

            headers = {
                'accept': 'application/json',
                'Content-Type': 'application/json'
            }

            logger.info("Requesting new authentication token...")
            response = self.session.post(url, json=login_data, headers=headers, timeout=Config.REQUEST_TIMEOUT_SECONDS)

            if response.status_code == 200:
                data = response.json()

                # Look for token in response
                token_fields = ['token', 'access_token', 'accessToken']
                for field in token_fields:
                    if field in data:
                        return data[field]
                    elif isinstance(data.get('data'), dict) and field in data['data']:
                        return data['data'][field]

                logger.error("Token not found in login response")
                return None
            else:
                logger.error(f"Login failed: {response.status_code} - {response.text[:200]}")
                return None

        except (requests.RequestException, ValueError) as e:
            logger.error(f"Login error: {e}")
            return None

    def _update_token(self, new_token: str) -> bool:
        """Keep the new token in memory and, when writable, in the .env file."""
        self._current_token = new_token
        self._token_expiry = self._get_token_expiry(new_token)
        os.environ['DISPATCH_TOKEN'] = new_token

        # Works locally; containers usually mount .env read-only
        if os.path.exists(self.env_file) and os.access(self.env_file, os.W_OK):
            try:
                set_key(self.env_file, 'DISPATCH_TOKEN', new_token)
                logger.success("Token updated in .env file")
            except OSError as e:
                logger.warning(f"Token kept in memory only, .env not updated: {e}")
        else:
            logger.info("Token updated in memory (container mode)")

        return True

    def get_valid_token(self) -> Optional[str]:
        """Get a valid token, refreshing if necessary."""
        if not self._is_token_expired():
            return self._current_token

        logger.info("Token expired or missing, getting new token...")
        new_token = self._login_and_get_token()

        if new_token and self._update_token(new_token):
            logger.success("Token automatically refreshed")
            return new_token

        logger.error("Failed to get new token")
        return None

    def refresh_token(self) -> bool:
        """Force refresh the token."""
        logger.info("Force refreshing token...")
        new_token = self._login_and_get_token()

        if new_token:
            return self._update_token(new_token)
        return False

    def get_token_info(self) -> dict:
        """Get information about current token."""
        if not self._current_token:
            return {"status": "no_token", "message": "No token available"}

        if not self._token_expiry:
            return {"status": "unknown_expiry", "token_length": len(self._current_token)}

        now = datetime.now()
        if now >= self._token_expiry:
            return {
                "status": "expired",
                "expired_at": self._token_expiry.isoformat(),
                "expired_ago": str(now - self._token_expiry)
            }
        else:
            return {
                "status": "valid",
                "expires_at": self._token_expiry.isoformat(),
                "expires_in": str(self._token_expiry - now)
            }
