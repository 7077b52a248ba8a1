"""Health check endpoint for monitoring and load balancers."""

from datetime import datetime

from flask import jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app import app, db


@app.route("/health")
def health_check():
    """Return 200 when the database answers, 503 otherwise."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {},
    }
    try:
        db.session.execute(text("SELECT 1"))
        db.session.commit()
        health_status["checks"]["database"] = {
            "status": "ok",
            "message": "Database connection successful",
        }
    except SQLAlchemyError as e:
        db.session.rollback()
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "error",
            "message": f"Database connection failed: {str(e)}",
        }
        return jsonify(health_status), 503
    return jsonify(health_status)
