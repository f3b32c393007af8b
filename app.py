import os
import logging
import time
from datetime import datetime, date
from flask import Flask, Response, render_template, request, jsonify, stream_with_context
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from dns_probe import DNSProbe, start_dns_query

# Configure logging
logging.basicConfig(level=logging.DEBUG)

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)

# Create the Flask app
app = Flask(__name__)
app.secret_key = os.environ.get("SESSION_SECRET", "dns-probe-secret-key")

# Configure the database
database_url = os.environ.get("DATABASE_URL")
if database_url:
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "pool_recycle": 300,
        "pool_pre_ping": True,
    }
else:
    # Fallback for development
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///dns_probe.db"

app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

# Initialize the app with the extension
db.init_app(app)

# Shared probe; its config is read from the environment once
dns_probe = DNSProbe()

RESULT_LINE_PREFIX = "IP: "


class QueryStats(db.Model):
    """Daily usage counters. Individual results are never stored."""
    __tablename__ = 'query_stats'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, unique=True, index=True)
    total_queries = db.Column(db.Integer, default=0)
    successful_queries = db.Column(db.Integer, default=0)
    failed_queries = db.Column(db.Integer, default=0)
    avg_query_time = db.Column(db.Float, default=0.0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def record(self, success: bool, duration: float):
        total = self.total_queries or 0
        self.avg_query_time = ((self.avg_query_time or 0.0) * total + duration) / (total + 1)
        self.total_queries = total + 1
        if success:
            self.successful_queries = (self.successful_queries or 0) + 1
        else:
            self.failed_queries = (self.failed_queries or 0) + 1

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'total_queries': self.total_queries or 0,
            'successful_queries': self.successful_queries or 0,
            'failed_queries': self.failed_queries or 0,
            'avg_query_time': round(self.avg_query_time or 0.0, 3),
        }

    def __repr__(self):
        return f'<QueryStats {self.date}>'

# Create tables
with app.app_context():
    db.create_all()


def record_query_stats(success: bool, duration: float):
    """Add one finished query to today's counters."""
    try:
        stats = QueryStats.query.filter_by(date=date.today()).first()
        if stats is None:
            stats = QueryStats(date=date.today(), total_queries=0, successful_queries=0,
                               failed_queries=0, avg_query_time=0.0)
            db.session.add(stats)
        stats.record(success, duration)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logging.error(f"Failed to record query stats: {e}")


@app.route('/')
def index():
    """Main page with domain input form."""
    return render_template('index.html')

@app.route('/query', methods=['GET', 'POST'])
def query():
    """Stream probe progress for the submitted domain as plain text."""
    domain = (request.values.get('domain') or '').strip()
    logging.info(f"Starting DNS probe for {domain!r}")
    channel = start_dns_query(domain, probe=dns_probe)
    started = time.time()

    def generate():
        success = False
        try:
            for line in channel:
                if line.startswith(RESULT_LINE_PREFIX):
                    success = True
                yield line + "\n"
        finally:
            if not channel.closed:
                # client went away before the run finished
                channel.cancel()
            record_query_stats(success, time.time() - started)

    return Response(stream_with_context(generate()), mimetype='text/plain; charset=utf-8')

@app.route('/stats')
def stats():
    """Today's query counters as JSON."""
    today = QueryStats.query.filter_by(date=date.today()).first()
    if today is None:
        return jsonify({
            'date': date.today().isoformat(),
            'total_queries': 0,
            'successful_queries': 0,
            'failed_queries': 0,
            'avg_query_time': 0.0,
        })
    return jsonify(today.to_dict())

@app.errorhandler(404)
def not_found_error(error):
    return render_template('index.html'), 404

@app.errorhandler(500)
def internal_error(error):
    logging.error(f"Internal error: {error}")
    return render_template('index.html', error='An internal error occurred. Please try again.'), 500

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
