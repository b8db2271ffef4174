# ============================================
# Flask 擴展 (在 app.py 的 create_app 裡 init_app)
# ============================================

from flask_bcrypt import Bcrypt
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

bcrypt = Bcrypt()
jwt = JWTManager()
socketio = SocketIO()

# Rate Limiting: 開發環境用記憶體,production 用 Redis (RATELIMIT_STORAGE_URI)
limiter = Limiter(key_func=get_remote_address)
