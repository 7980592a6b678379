import os

# config refuses to import without a URI; the suite binds mongomock instead
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("SEED_CATALOG", "true")
os.environ["ENABLE_BOT"] = "false"
os.environ["PUBLIC_UI_API_KEY"] = ""
