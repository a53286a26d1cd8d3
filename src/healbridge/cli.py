"""CLI entry point for the HealBridge gateway."""
import uvicorn


def main():
    """Launch the HealBridge API server."""
    from healbridge.config import load_config
    cfg = load_config()

    uvicorn.run(
        "healbridge.app:create_app",
        factory=True,
        host=cfg.app.host,
        port=int(cfg.app.port),
        reload=cfg.app.env == "development",
        log_level=cfg.app.log_level.lower(),
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
