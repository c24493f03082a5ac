"""Connector settings and configuration."""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv

# .env 파일에서 환경변수 로드 (프로젝트 루트 기준)
_env_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
load_dotenv(_env_path, encoding="utf-8-sig")


class Settings:
    """Connector settings manager."""

    # Default settings
    DEFAULTS = {
        # Graph API
        'graph_base_url': 'https://graph.microsoft.com/v1.0',
        'drive_root': '/me/drive',
        'request_timeout': 60,

        # Bridge service (external key-value store + webhook fan-out)
        'bridge_service_url': 'http://localhost:8080',
        'app_name': 'onedrive',
        'bridge_token': None,

        # Subscription
        'client_state': '',
        'subscription_resource': '/me/drive/root',
        'subscription_change_type': 'updated',  # drive item에서 지원하는 유일한 이벤트
        'subscription_expiration_minutes': 40000,
        'renewal_period_minutes': 39995,

        # Upload
        'simple_upload_limit': 4194304,  # 4MB
        'upload_chunk_size': 3932160,  # 320KiB 배수
        'max_upload_iterations': 10000,

        # Token store
        'token_store': 'memory',  # 'memory', 'sqlite' or 'bridge'
        'token_db_path': 'database/delta_tokens.db',
        'fan_out': 'memory',  # 'memory' or 'bridge'

        # 호스트가 넘겨준 토큰 없이 갱신 스케줄러를 돌릴 때 사용
        'access_token': None,

        # Logging
        'log_level': 'INFO',
        'log_file': None,

        # Webhook server
        'webhook_host': '0.0.0.0',
        'webhook_port': 8000,
    }

    INT_KEYS = [
        'request_timeout', 'subscription_expiration_minutes', 'renewal_period_minutes',
        'simple_upload_limit', 'upload_chunk_size', 'max_upload_iterations', 'webhook_port',
    ]

    def __init__(self, config: Optional[Dict[str, Any]] = None, config_file: Optional[str] = None):
        """Initialize settings.

        Args:
            config: Optional configuration dictionary
            config_file: Optional JSON config file path
        """
        self.config = self.DEFAULTS.copy()

        # Load from environment variables
        self._load_from_env()

        # Load from config file if exists
        self._load_from_file(config_file)

        # Override with provided config
        if config:
            self.config.update(config)

    def _load_from_env(self):
        """Load settings from environment variables."""
        env_mappings = {
            'ONEDRIVE_GRAPH_BASE_URL': 'graph_base_url',
            'ONEDRIVE_DRIVE_ROOT': 'drive_root',
            'ONEDRIVE_REQUEST_TIMEOUT': 'request_timeout',
            'ONEDRIVE_BRIDGE_SERVICE_URL': 'bridge_service_url',
            'ONEDRIVE_APP_NAME': 'app_name',
            'ONEDRIVE_BRIDGE_TOKEN': 'bridge_token',
            'ONEDRIVE_CLIENT_STATE': 'client_state',
            'ONEDRIVE_SUBSCRIPTION_EXPIRATION_MINUTES': 'subscription_expiration_minutes',
            'ONEDRIVE_RENEWAL_PERIOD_MINUTES': 'renewal_period_minutes',
            'ONEDRIVE_UPLOAD_CHUNK_SIZE': 'upload_chunk_size',
            'ONEDRIVE_MAX_UPLOAD_ITERATIONS': 'max_upload_iterations',
            'ONEDRIVE_TOKEN_STORE': 'token_store',
            'ONEDRIVE_TOKEN_DB_PATH': 'token_db_path',
            'ONEDRIVE_FAN_OUT': 'fan_out',
            'ONEDRIVE_ACCESS_TOKEN': 'access_token',
            'ONEDRIVE_LOG_LEVEL': 'log_level',
            'ONEDRIVE_LOG_FILE': 'log_file',
            'ONEDRIVE_WEBHOOK_HOST': 'webhook_host',
            'ONEDRIVE_WEBHOOK_PORT': 'webhook_port',
        }

        for env_var, config_key in env_mappings.items():
            value = os.environ.get(env_var)
            if value:
                # Convert numeric values
                if config_key in self.INT_KEYS:
                    try:
                        value = int(value)
                    except ValueError:
                        continue
                self.config[config_key] = value

    def _load_from_file(self, config_file: Optional[str] = None):
        """Load settings from config file."""
        config_paths = [Path(config_file)] if config_file else [
            Path.home() / '.onedrive_connector' / 'config.json',
            Path('./onedrive_connector.json'),
        ]

        for config_path in config_paths:
            if config_path.exists():
                with open(config_path, 'r', encoding='utf-8') as f:
                    self.config.update(json.load(f))
                break

    @property
    def notification_url(self) -> str:
        """Bridge 서비스가 Graph 알림을 받는 URL"""
        bridge_url = str(self.config['bridge_service_url']).rstrip('/')
        return f"{bridge_url}/webhooks/{self.config['app_name']}"

    @property
    def drive_base_url(self) -> str:
        """드라이브 기준 URL (예: https://graph.microsoft.com/v1.0/me/drive)"""
        return f"{str(self.config['graph_base_url']).rstrip('/')}{self.config['drive_root']}"

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any):
        """Set configuration value."""
        self.config[key] = value

    def validate(self) -> Dict[str, Any]:
        """Validate configuration.

        Returns:
            Validation results with warnings and errors
        """
        results = {
            'valid': True,
            'warnings': [],
            'errors': []
        }

        # 갱신 주기는 구독 만료보다 짧아야 알림이 끊기지 않음
        if self.config['renewal_period_minutes'] >= self.config['subscription_expiration_minutes']:
            results['errors'].append('renewal_period_minutes must be shorter than subscription_expiration_minutes')
            results['valid'] = False

        # Upload session chunks must be multiples of 320 KiB
        if self.config['upload_chunk_size'] <= 0 or self.config['upload_chunk_size'] % 327680 != 0:
            results['errors'].append('upload_chunk_size must be a positive multiple of 327680')
            results['valid'] = False

        if self.config['max_upload_iterations'] <= 0:
            results['errors'].append('max_upload_iterations must be positive')
            results['valid'] = False

        if self.config['token_store'] not in ['memory', 'sqlite', 'bridge']:
            results['errors'].append('token_store must be memory, sqlite or bridge')
            results['valid'] = False

        if self.config['fan_out'] not in ['memory', 'bridge']:
            results['errors'].append('fan_out must be memory or bridge')
            results['valid'] = False

        if not self.config['client_state']:
            results['warnings'].append('client_state is empty, notifications cannot be verified')

        # Check log level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(self.config['log_level']).upper() not in valid_log_levels:
            results['warnings'].append('Invalid log_level, using INFO')
            self.config['log_level'] = 'INFO'

        return results

    def __getitem__(self, key: str) -> Any:
        return self.config[key]

    def __setitem__(self, key: str, value: Any):
        self.config[key] = value
