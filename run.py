from dotenv import load_dotenv
import logging
import os

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from backend.app import app, initialize  # noqa: E402

# 起動時にテーブル作成とデモ管理者の作成を行う
initialize()

if __name__ == "__main__":
    port = int(os.getenv("PORT", "5003"))
    app.run(debug=os.getenv("FLASK_DEBUG", "false").lower() in ("1", "true", "yes"), host="0.0.0.0", port=port)
