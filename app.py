from chattr import config
from chattr.main import app

# ---------------------
# Run (local only)
# ---------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT, proxy_headers=True, timeout_keep_alive=70)
