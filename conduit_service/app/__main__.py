import uvicorn
from conduit_service.core.config import load_settings


def main():
    cfg = load_settings()
    api_cfg = cfg.get('app', {}).get('api', {})
    host = api_cfg.get('host', "127.0.0.1")
    port = api_cfg.get('port', 8080)
    uvicorn.run("conduit_service.app.http.api:create_app", host=host, port=port, factory=True, reload=False)


if __name__ == "__main__":
    main()
