from .main import main

if __name__ == "__main__":  # pragma: no cover - thin CLI shim
    raise SystemExit(main())
