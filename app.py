import logging

from flask import Flask, flash, redirect, render_template, request, url_for

import config
from aggregator import coerce_rating, response_rate_band, round_half_up
from client import ApiError, get_client
from routes.admin_routes import admin_bp
from routes.dean_routes import dean_bp
from routes.hod_routes import hod_bp
from routes.student_routes import student_bp
from session import SessionContext, clear_session, current_session, save_session

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=config.LOG_LEVEL
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.config.update(
    API_URL=config.API_URL,
    API_TIMEOUT=config.API_TIMEOUT,
    API_TRANSPORT=None,
)
app.register_blueprint(admin_bp)
app.register_blueprint(hod_bp)
app.register_blueprint(dean_bp)
app.register_blueprint(student_bp)


@app.template_filter('rate_band')
def rate_band_filter(rate):
    return response_rate_band(rate)


@app.template_filter('stars')
def stars_filter(rating):
    filled = int(min(max(round_half_up(coerce_rating(rating)), 0), 5))
    return '★' * filled + '☆' * (5 - filled)


@app.context_processor
def inject_auth():
    return {'auth': current_session(), 'rating_scale': config.RATING_SCALE}


@app.route('/')
def index():
    context = current_session()
    if context is None:
        return redirect(url_for('login'))
    return redirect(url_for(context.dashboard_endpoint()))


@app.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        email = (request.form.get('email') or '').strip()
        password = request.form.get('password') or ''
        if not email or not password:
            flash("Please enter your email and password.", "danger")
            return redirect(url_for('login'))

        try:
            with get_client() as client:
                payload = client.post(config.ENDPOINTS['login'],
                                      {'email': email, 'password': password})
            context = SessionContext.from_login(payload or {})
        except ApiError as exc:
            flash(str(exc), "danger")
            return redirect(url_for('login'))
        except ValueError as exc:
            logger.warning("Rejected login response for %s: %s", email, exc)
            flash("Login failed. Please contact the administrator.", "danger")
            return redirect(url_for('login'))

        if context.role not in config.ROLE_DASHBOARDS:
            flash("There is no dashboard for this account.", "danger")
            return redirect(url_for('login'))

        save_session(context)
        logger.info("User %s logged in as %s", email, context.role)
        return redirect(url_for(context.dashboard_endpoint()))

    return render_template('login.html')


@app.route('/logout')
def logout():
    clear_session()
    flash("You have been logged out.", "info")
    return redirect(url_for('login'))


@app.errorhandler(404)
def not_found(error):
    return render_template('error.html', message="Page not found."), 404


@app.errorhandler(500)
def server_error(error):
    logger.exception("Unhandled error: %s", error)
    return render_template('error.html', message="Something went wrong. Please try again."), 500


if __name__ == '__main__':
    app.run(debug=True)
