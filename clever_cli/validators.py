"""Input validation for Clever CLI arguments.

Every value received on the command line goes through ``InputValidator``
before it reaches a command record.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from .errors import ValidationError

REGIONS = ('par', 'mtl')


class InputValidator:
    """Validates and sanitizes user inputs."""

    PATTERNS = {
        'alias': re.compile(r'^[a-zA-Z0-9]([a-zA-Z0-9_\-]{0,62}[a-zA-Z0-9])?$'),
        'app_id': re.compile(r'^[a-zA-Z0-9_\-]+$'),
        'app_name': re.compile(r'^[^\x00-\x1F\x7F]+$'),
        'env_var_key': re.compile(r'^[a-zA-Z_][a-zA-Z0-9_.\-]*$'),
        'env_var_value': re.compile(r'^[^\x00-\x08\x0B\x0C\x0E-\x1F\x7F]*$'),
        'git_branch': re.compile(r'^[a-zA-Z0-9_\-\/\.]+$'),
        'domain_name': re.compile(
            r'^(\*\.)?[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)+$'
        ),
        'api_token': re.compile(r'^[a-zA-Z0-9\-_\.]+$'),
    }

    MAX_LENGTHS = {
        'alias': 64,
        'app_id': 128,
        'app_name': 255,
        'env_var_key': 255,
        'env_var_value': 8192,
        'git_branch': 255,
        'domain_name': 253,
        'url': 2048,
        'api_token': 1024,
    }

    @classmethod
    def validate_alias(cls, alias: Optional[str]) -> Optional[str]:
        """Validate an application alias.

        Returns:
            The alias, or None when no alias was given.

        Raises:
            ValidationError: If the alias is malformed.
        """
        if alias is None:
            return None
        alias = alias.strip()
        if not alias:
            raise ValidationError("Alias cannot be empty")
        if len(alias) > cls.MAX_LENGTHS['alias']:
            raise ValidationError(f"Alias cannot exceed {cls.MAX_LENGTHS['alias']} characters")
        if not cls.PATTERNS['alias'].match(alias):
            raise ValidationError(
                "Alias must contain only alphanumeric characters, hyphens and underscores, "
                "and cannot start or end with a hyphen"
            )
        return alias

    @classmethod
    def validate_app_id(cls, app_id: str) -> str:
        if not app_id:
            raise ValidationError("Application id cannot be empty")
        if len(app_id) > cls.MAX_LENGTHS['app_id'] or not cls.PATTERNS['app_id'].match(app_id):
            raise ValidationError(f"Invalid application id: {app_id}")
        return app_id

    @classmethod
    def validate_app_name(cls, name: str) -> str:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Application name cannot be empty")
        if len(name) > cls.MAX_LENGTHS['app_name'] or not cls.PATTERNS['app_name'].match(name):
            raise ValidationError("Application name contains invalid characters")
        return name

    @classmethod
    def validate_region(cls, region: str) -> str:
        region = (region or 'par').lower()
        if region not in REGIONS:
            raise ValidationError(f"Region must be one of: {', '.join(REGIONS)}")
        return region

    @classmethod
    def validate_git_branch(cls, branch: Optional[str]) -> str:
        """Validate a git branch name.

        An empty branch means the current local branch and is returned as "".

        Raises:
            ValidationError: If the branch name is invalid.
        """
        if not branch:
            return ''

        if len(branch) > cls.MAX_LENGTHS['git_branch']:
            raise ValidationError(f"Branch name cannot exceed {cls.MAX_LENGTHS['git_branch']} characters")

        if not cls.PATTERNS['git_branch'].match(branch):
            raise ValidationError(
                "Branch name must contain only alphanumeric characters, "
                "underscores, hyphens, forward slashes, and dots"
            )

        # A leading hyphen would be read as a git option
        if branch.startswith('-') or branch.endswith('/') or '..' in branch:
            raise ValidationError("Branch name cannot start with hyphen, end with slash or contain '..'")

        return branch

    @classmethod
    def validate_domain_name(cls, domain: str) -> str:
        """Validate a fully qualified domain name."""
        domain = (domain or '').lower().strip()
        if not domain:
            raise ValidationError("Domain name cannot be empty")

        if len(domain) > cls.MAX_LENGTHS['domain_name']:
            raise ValidationError(f"Domain name cannot exceed {cls.MAX_LENGTHS['domain_name']} characters")

        if not cls.PATTERNS['domain_name'].match(domain):
            raise ValidationError(f"Invalid domain name format: {domain}")

        return domain

    @classmethod
    def validate_env_var_key(cls, key: str) -> str:
        if not key:
            raise ValidationError("Environment variable name cannot be empty")

        if len(key) > cls.MAX_LENGTHS['env_var_key']:
            raise ValidationError(f"Environment variable name cannot exceed {cls.MAX_LENGTHS['env_var_key']} characters")

        if not cls.PATTERNS['env_var_key'].match(key):
            raise ValidationError(
                "Environment variable name must start with a letter or underscore, "
                "and contain only alphanumeric characters, dots, hyphens and underscores"
            )

        return key

    @classmethod
    def validate_env_var_value(cls, value: Optional[str]) -> str:
        if value is None:
            return ''

        if len(value) > cls.MAX_LENGTHS['env_var_value']:
            raise ValidationError(f"Environment variable value cannot exceed {cls.MAX_LENGTHS['env_var_value']} characters")

        if not cls.PATTERNS['env_var_value'].match(value):
            raise ValidationError("Environment variable value contains invalid characters")

        return value

    @classmethod
    def validate_api_token(cls, token: str) -> str:
        token = (token or '').strip()
        if not token:
            raise ValidationError("API token cannot be empty")

        if len(token) < 10:
            raise ValidationError("API token appears to be too short")

        if len(token) > cls.MAX_LENGTHS['api_token']:
            raise ValidationError(f"API token cannot exceed {cls.MAX_LENGTHS['api_token']} characters")

        if not cls.PATTERNS['api_token'].match(token):
            raise ValidationError("API token contains invalid characters")

        return token

    @classmethod
    def validate_url(cls, url: str) -> str:
        """Validate the platform API URL.

        Returns:
            The URL without its trailing slash.
        """
        url = (url or '').strip()
        if not url:
            raise ValidationError("URL cannot be empty")

        if len(url) > cls.MAX_LENGTHS['url']:
            raise ValidationError(f"URL cannot exceed {cls.MAX_LENGTHS['url']} characters")

        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https'):
            raise ValidationError("URL must use http or https protocol")
        if not parsed.hostname:
            raise ValidationError("URL must include a valid hostname")

        return url.rstrip('/')
