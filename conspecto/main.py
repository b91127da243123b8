from conspecto.app import AppSettings, bootstrap

__all__ = ["main"]


def main() -> None:
    """Apply pending migrations and check that the study core can be wired."""
    settings = AppSettings.from_env()
    bootstrap(settings)


if __name__ == "__main__":
    main()
