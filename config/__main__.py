"""Command line interface for testing configuration loading"""
from pathlib import Path

from . import settings_conf

SECRET_KEYS = {'jwt_secret'}


def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS:
            value = '********'
        print(f"{key}: {value}")

    example_path = Path("settings.conf.example")
    if not example_path.exists():
        example_path.write_text("""[DEFAULT]
# Database connection URL
db_url = postgresql://root@localhost:26257/defaultdb?sslmode=disable
# postgres or memory
storage_backend = postgres
auth_provider = clerk
jwt_secret = change-me
jwt_algorithm = HS256
jwt_audience =
# Platform fee in basis points of the purchase total
platform_fee_bps = 100
settlement_currency = usd
api_host = 0.0.0.0
api_port = 8080
log_level = INFO
""")
        print(f"\nWrote {example_path}")


if __name__ == "__main__":
    main()
