# Production entrypoint: gunicorn -c gunicorn.config.py
import gevent.monkey
gevent.monkey.patch_all()

import os
from app import create_app
from logger import app_logger
from blueprints.payment_monitor import start_payment_monitor

# ----------------------
# Create app instance
# ----------------------
app = create_app()

if app.config.get("PAYMENT_MONITOR_ENABLED"):
    start_payment_monitor(app)
    app_logger.info("Crypto payment monitor started")

# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", False)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
