import yaml
import os

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
CONFIG_PATH = os.path.join(BASE_DIR, 'config.yml')

# (section, key, env var); the first env var that is set wins
ENV_OVERRIDES = [
    (None, 'database_url', ('DATABASE_URL',)),
    (None, 'secret_key', ('SECRET_KEY',)),
    (None, 'app_url', ('APP_URL', 'NEXTAUTH_URL')),
    (None, 'log_level', ('LOG_LEVEL',)),
    ('storage', 'endpoint_url', ('S3_ENDPOINT_URL',)),
    ('storage', 'access_key', ('S3_ACCESS_KEY',)),
    ('storage', 'secret_key', ('S3_SECRET_KEY',)),
    ('storage', 'bucket', ('S3_BUCKET',)),
    ('storage', 'region', ('S3_REGION',)),
    ('storage', 'public_url', ('S3_PUBLIC_URL',)),
    ('storage', 'skip_bucket_creation', ('S3_SKIP_BUCKET_CREATION',)),
    ('email', 'api_key', ('RESEND_API_KEY',)),
    ('email', 'from_address', ('EMAIL_FROM',)),
    ('push', 'vapid_public_key', ('VAPID_PUBLIC_KEY',)),
    ('push', 'vapid_private_key', ('VAPID_PRIVATE_KEY',)),
    ('push', 'contact', ('VAPID_CONTACT',)),
    ('ai', 'api_key', ('ANTHROPIC_API_KEY',)),
    ('ai', 'model', ('AI_MODEL',)),
    ('cron', 'secret', ('CRON_SECRET', 'CRON_API_KEY')),
    ('notifications', 'dedupe_daily', ('NOTIFY_DEDUPE_DAILY',)),
]

BOOLEAN_KEYS = {'skip_bucket_creation', 'dedupe_daily'}


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _section(config: dict, name: str) -> dict:
    # A YAML section whose keys are all commented out loads as None
    if not isinstance(config.get(name), dict):
        config[name] = {}
    return config[name]


def apply_defaults(config: dict) -> dict:
    config.setdefault('app_url', 'http://localhost:5000')
    config.setdefault('log_level', 'INFO')
    storage = _section(config, 'storage')
    storage.setdefault('endpoint_url', None)
    storage.setdefault('access_key', None)
    storage.setdefault('secret_key', None)
    storage.setdefault('bucket', 'photos')
    storage.setdefault('region', 'us-east-1')
    storage.setdefault('public_url', None)
    storage.setdefault('skip_bucket_creation', False)
    email = _section(config, 'email')
    email.setdefault('api_key', None)
    email.setdefault('from_address', 'Prepper Helper <noreply@localhost>')
    push = _section(config, 'push')
    push.setdefault('vapid_public_key', None)
    push.setdefault('vapid_private_key', None)
    push.setdefault('contact', 'mailto:admin@localhost')
    ai = _section(config, 'ai')
    ai.setdefault('api_key', None)
    ai.setdefault('model', 'claude-haiku-4-5')
    ai.setdefault('max_tokens', 1024)
    ai.setdefault('api_url', 'https://api.anthropic.com/v1/messages')
    _section(config, 'cron').setdefault('secret', None)
    _section(config, 'notifications').setdefault('dedupe_daily', False)
    for section in ('storage', 'notifications'):
        for key in BOOLEAN_KEYS:
            if key in config[section]:
                config[section][key] = _as_bool(config[section][key])
    return config


def load_config(path: str | None = None, environ=None):
    """Read config.yml (optional), then let environment variables win."""
    environ = os.environ if environ is None else environ
    path = path or environ.get('PREPPER_CONFIG') or CONFIG_PATH
    config = {}
    if os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    for section, key, env_names in ENV_OVERRIDES:
        value = next((environ[n] for n in env_names if environ.get(n)), None)
        if value is None:
            continue
        target = config if section is None else _section(config, section)
        target[key] = value
    return apply_defaults(config)
