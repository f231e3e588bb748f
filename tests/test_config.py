from prepper.config import load_config


def test_defaults_without_file(tmp_path):
    config = load_config(str(tmp_path / 'missing.yml'), environ={})
    assert config['storage']['bucket'] == 'photos'
    assert config['ai']['api_url'] == 'https://api.anthropic.com/v1/messages'
    assert config['cron']['secret'] is None
    assert config['notifications']['dedupe_daily'] is False


def test_yaml_then_environment(tmp_path):
    path = tmp_path / 'config.yml'
    path.write_text(
        "app_url: http://stash.local\n"
        "storage:\n"
        "  bucket: supplies\n"
        "cron:\n"
        "  # secret: unset\n",
        encoding='utf-8',
    )
    config = load_config(str(path), environ={
        'S3_SKIP_BUCKET_CREATION': 'true',
        'CRON_API_KEY': 'from-env',
        'NOTIFY_DEDUPE_DAILY': '1',
        'NEXTAUTH_URL': 'http://ignored.local',
        'APP_URL': 'http://env.local',
    })
    assert config['storage']['bucket'] == 'supplies'
    assert config['storage']['skip_bucket_creation'] is True
    assert config['cron']['secret'] == 'from-env'
    assert config['notifications']['dedupe_daily'] is True
    # APP_URL is listed before NEXTAUTH_URL
    assert config['app_url'] == 'http://env.local'
