"""
Flaskアプリケーションの生成とBlueprint登録。
Flask application setup and blueprint registration.
"""

from flask import Flask, Response, jsonify
from flask_cors import CORS
from dotenv import load_dotenv
import logging
import os

from backend import database, security
from backend.routes.arrival import arrival_bp
from backend.routes.auth import auth_bp
from backend.routes.monthly import monthly_bp
from backend.routes.staff import staff_bp
from backend.routes.tours import tours_bp
from backend.staff_service import bootstrap_staff

load_dotenv()

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-secret-key")
app.json.sort_keys = False

# Cookie（session_id）を使うため、許可オリジンに限定して credentials を有効にする
CORS(
    app,
    resources={r"/api/*": {"origins": security.get_allowed_origins()}},
    supports_credentials=True,
)

app.register_blueprint(auth_bp)
app.register_blueprint(tours_bp)
app.register_blueprint(arrival_bp)
app.register_blueprint(staff_bp)
app.register_blueprint(monthly_bp)


@app.after_request
def add_security_headers(response: Response) -> Response:
    return security.apply_security_headers(response)


@app.route("/api/health", methods=["GET"])
def health() -> Response:
    return jsonify({"status": "ok"})


def initialize() -> None:
    """
    起動時の初期化（テーブル作成・デモ管理者作成）
    Startup initialization: create tables and bootstrap staff accounts.
    """
    database.init_db()
    db = database.SessionLocal()
    try:
        bootstrap_staff(db)
    finally:
        db.close()
