"""
Portfolio Tracker API
Tracks user portfolios of stocks and ETFs, detects holdings in brokerage
screenshots or pasted statement text, and values them at live market prices.
Includes user authentication, role-based admin endpoints and OCR history.
"""

import logging
import os
from functools import wraps

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager, create_access_token, get_jwt_identity, jwt_required
from werkzeug.exceptions import HTTPException

from asset_parser import MANUAL_CONFIDENCE, OCR_CONFIDENCE, extract_holdings_fields, parse_assets
from config import Config, setup_logging
from errors import AuthenticationError, OCRError, PermissionDeniedError, PortfolioError, ValidationError
from models import User, db
from ocr_engine import ALLOWED_IMAGE_EXTENSIONS, OCREngine, is_allowed_image
from price_lookup import PriceLookup
from store import PortfolioStore, asset_valuation, portfolio_valuation
from symbols import DEFAULT_SYMBOLS, load_symbols

logger = logging.getLogger('portfolio_tracker.api')

api = Blueprint('api', __name__)

# Activity actions shown in the OCR history
OCR_ACTIONS = ('ocr_process', 'ocr_process_text', 'detect_assets', 'import_assets')


# =============================================================================
# HELPERS
# =============================================================================

def _store():
    return PortfolioStore(db.session)


def _prices():
    return current_app.extensions['price_lookup']


def _ocr():
    return current_app.extensions['ocr_engine']


def _symbols():
    return current_app.extensions['symbols']


def _current_user():
    try:
        user_id = int(get_jwt_identity())
    except (TypeError, ValueError):
        raise AuthenticationError('Invalid token identity')
    user = db.session.get(User, user_id)
    if user is None:
        raise AuthenticationError('User not found')
    return user


def _json_body():
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        raise ValidationError('No data provided')
    return data


def _issue_token(user):
    return create_access_token(identity=str(user.id), additional_claims={'role': user.role})


def handle_errors(action):
    """
    Decorator giving routes the same failure behaviour: PortfolioErrors and
    HTTP errors propagate to the registered handlers, anything else rolls
    the session back and is reported as a 500 '<action>: <reason>'.
    """
    def wrapper(fn):
        @wraps(fn)
        def decorator(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except (PortfolioError, HTTPException):
                db.session.rollback()
                raise
            except Exception as e:
                db.session.rollback()
                logger.exception("%s", action)
                return jsonify({'error': f'{action}: {str(e)}'}), 500
        return decorator
    return wrapper


def admin_required():
    """Decorator restricting a route to users with the admin role."""
    def wrapper(fn):
        @wraps(fn)
        def decorator(*args, **kwargs):
            if not _current_user().is_admin:
                raise PermissionDeniedError('Admin access required')
            return fn(*args, **kwargs)
        return decorator
    return wrapper


def _read_uploaded_image():
    if 'image' not in request.files:
        raise ValidationError('No image provided')

    file = request.files['image']
    if not file.filename:
        raise ValidationError('No file selected')
    if not is_allowed_image(file.filename):
        allowed = ', '.join(sorted(ext.lstrip('.') for ext in ALLOWED_IMAGE_EXTENSIONS))
        raise ValidationError(f'Unsupported file type. Allowed: {allowed}')

    return file.read()


def _read_statement_text():
    """
    Text to detect assets in, from either an uploaded image (run through
    OCR) or a JSON {"text": ...} body. Returns (text, source).
    """
    if 'image' in request.files:
        return _ocr().recognize_text(_read_uploaded_image()), 'image'

    data = request.get_json(silent=True) or {}
    text = data.get('text') if isinstance(data, dict) else None
    if not isinstance(text, str) or not text.strip():
        raise ValidationError('Provide an image upload or non-empty text')
    return text, 'text'


def _refresh_prices(store, assets):
    symbols = [asset.symbol for asset in assets]
    if not symbols:
        return [], []
    prices = _prices().get_prices(symbols)
    return store.apply_prices(assets, prices)


# =============================================================================
# HEALTH / MARKET DATA
# =============================================================================

@api.route('/health', methods=['GET'])
def health():
    """Health check endpoint."""
    return jsonify({'status': 'ok'})


@api.route('/search', methods=['GET'])
def search_stocks():
    """Search for stocks by name or symbol."""
    query = request.args.get('q', '').strip()
    if not query:
        return jsonify({'results': []})
    return jsonify({'results': _prices().search(query)})


@api.route('/quote/<symbol>', methods=['GET'])
@handle_errors('Failed to get quote')
def get_quote(symbol):
    """Get current price quote for a symbol."""
    symbol = symbol.upper().strip()
    quote = _prices().get_quote(symbol)
    if quote is None:
        return jsonify({'error': f'Symbol {symbol} not found'}), 404
    return jsonify(quote)


@api.route('/prices/<symbol>/history', methods=['GET'])
@handle_errors('Failed to get price history')
def get_symbol_history(symbol):
    """Daily closing prices for a symbol over a period (1m..5y, max)."""
    symbol = symbol.upper().strip()
    period = request.args.get('period', '1y')
    try:
        history = _prices().get_history(symbol, period)
    except ValueError as e:
        raise ValidationError(str(e))

    return jsonify({
        'symbol': symbol,
        'period': period,
        'history': [{'date': day.isoformat(), 'price': round(price, 4)} for day, price in history]
    })


# =============================================================================
# AUTHENTICATION ENDPOINTS
# =============================================================================

@api.route('/auth/register', methods=['POST'])
@handle_errors('Registration failed')
def register():
    """Register a new user account."""
    data = _json_body()

    user = _store().create_user(
        email=data.get('email', ''),
        password=data.get('password', ''),
        name=data.get('name', ''),
        bcrypt_rounds=current_app.config['BCRYPT_ROUNDS']
    )

    return jsonify({
        'message': 'Account created successfully',
        'user': user.to_dict(),
        'access_token': _issue_token(user)
    }), 201


@api.route('/auth/login', methods=['POST'])
@handle_errors('Login failed')
def login():
    """Log in and get JWT token."""
    data = _json_body()

    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or not password:
        raise ValidationError('Email and password are required')

    store = _store()
    user = store.find_user_by_email(email)
    if not user or not user.check_password(password):
        raise AuthenticationError('Invalid email or password')

    store.record_login(user)
    logger.info("User %s logged in", user.email)

    return jsonify({
        'message': 'Login successful',
        'user': user.to_dict(),
        'access_token': _issue_token(user)
    })


@api.route('/auth/me', methods=['GET'])
@jwt_required()
def get_current_user():
    """Get the current authenticated user."""
    return jsonify({'user': _current_user().to_dict()})


# =============================================================================
# PORTFOLIO ENDPOINTS
# =============================================================================

@api.route('/portfolios', methods=['GET'])
@jwt_required()
@handle_errors('Failed to list portfolios')
def list_portfolios():
    """List all portfolios for the current user, with totals."""
    portfolios = _store().list_portfolios(_current_user())

    return jsonify({
        'portfolios': [portfolio_valuation(p, include_assets=False) for p in portfolios],
        'count': len(portfolios)
    })


@api.route('/portfolios', methods=['POST'])
@jwt_required()
@handle_errors('Failed to save portfolio')
def create_portfolio():
    """Create a new, empty portfolio."""
    data = _json_body()
    portfolio = _store().create_portfolio(_current_user(), data.get('name'), data.get('description'))

    return jsonify({
        'message': 'Portfolio created successfully',
        'portfolio': portfolio_valuation(portfolio)
    }), 201


@api.route('/portfolios/<int:portfolio_id>', methods=['GET'])
@jwt_required()
@handle_errors('Failed to get portfolio')
def get_portfolio(portfolio_id):
    """Get a portfolio with its valued assets. ?refresh=1 re-prices them first."""
    store = _store()
    portfolio = store.get_portfolio(_current_user(), portfolio_id)

    if request.args.get('refresh', '').lower() in ('1', 'true', 'yes'):
        _refresh_prices(store, portfolio.assets)

    return jsonify({'portfolio': portfolio_valuation(portfolio)})


@api.route('/portfolios/<int:portfolio_id>', methods=['PUT'])
@jwt_required()
@handle_errors('Failed to update portfolio')
def update_portfolio(portfolio_id):
    """Update a portfolio's name or description."""
    data = _json_body()
    portfolio = _store().update_portfolio(_current_user(), portfolio_id, data)

    return jsonify({
        'message': 'Portfolio updated successfully',
        'portfolio': portfolio_valuation(portfolio)
    })


@api.route('/portfolios/<int:portfolio_id>', methods=['DELETE'])
@jwt_required()
@handle_errors('Failed to delete portfolio')
def delete_portfolio(portfolio_id):
    """Delete a portfolio and its assets."""
    _store().delete_portfolio(_current_user(), portfolio_id)
    return jsonify({'message': 'Portfolio deleted successfully'})


@api.route('/portfolios/<int:portfolio_id>/prices/refresh', methods=['POST'])
@jwt_required()
@handle_errors('Failed to refresh prices')
def refresh_portfolio_prices(portfolio_id):
    """Fetch current prices for every asset in the portfolio."""
    store = _store()
    portfolio = store.get_portfolio(_current_user(), portfolio_id)
    updated, unavailable = _refresh_prices(store, portfolio.assets)

    if unavailable:
        logger.warning("No price for %s in portfolio %d", ', '.join(unavailable), portfolio.id)

    return jsonify({
        'portfolio': portfolio_valuation(portfolio),
        'updated': updated,
        'unavailable': unavailable
    })


@api.route('/portfolios/<int:portfolio_id>/import', methods=['POST'])
@jwt_required()
@handle_errors('Failed to import assets')
def import_assets(portfolio_id):
    """Detect assets in a screenshot or text and add them to the portfolio."""
    user = _current_user()
    store = _store()
    # Ownership is checked before any OCR work is done
    store.get_portfolio(user, portfolio_id)

    try:
        text, source = _read_statement_text()
    except OCRError as e:
        logger.warning("Import OCR failed: %s", e)
        raise ValidationError('No text extracted')

    candidates = parse_assets(text, _symbols())
    prices = _prices().get_prices([c.symbol for c in candidates]) if candidates else {}
    assets = store.add_candidates(user, portfolio_id, candidates, prices)

    store.log_activity(user.id, 'import_assets', {
        'portfolio_id': portfolio_id,
        'source': source,
        'symbols': [a.symbol for a in assets]
    })

    return jsonify({
        'message': f'Imported {len(assets)} assets',
        'assets': [dict(a.to_dict(), **asset_valuation(a)) for a in assets],
        'count': len(assets),
        'source': source
    }), 201


# =============================================================================
# ASSET ENDPOINTS
# =============================================================================

@api.route('/portfolios/<int:portfolio_id>/assets', methods=['GET'])
@jwt_required()
@handle_errors('Failed to list assets')
def list_assets(portfolio_id):
    """List assets of a portfolio with their valuation."""
    assets = _store().list_assets(_current_user(), portfolio_id)

    return jsonify({
        'assets': [dict(a.to_dict(), **asset_valuation(a)) for a in assets],
        'count': len(assets)
    })


@api.route('/portfolios/<int:portfolio_id>/assets', methods=['POST'])
@jwt_required()
@handle_errors('Failed to save asset')
def create_asset(portfolio_id):
    """Add an asset. Its current price is looked up; failures leave it empty."""
    data = _json_body()
    store = _store()
    asset = store.create_asset(_current_user(), portfolio_id, data)

    price = _prices().get_price(asset.symbol)
    if price is not None:
        store.apply_prices([asset], {asset.symbol: price})

    return jsonify({
        'message': 'Asset added successfully',
        'asset': dict(asset.to_dict(), **asset_valuation(asset))
    }), 201


@api.route('/assets/<int:asset_id>', methods=['GET'])
@jwt_required()
@handle_errors('Failed to get asset')
def get_asset(asset_id):
    """Get an asset with 1 month, 1 year and since-purchase price changes."""
    asset = _store().get_asset(_current_user(), asset_id)
    changes = _prices().temporal_changes(asset.symbol, asset.current_price, asset.purchase_price)

    return jsonify({
        'asset': dict(asset.to_dict(), **asset_valuation(asset)),
        'temporal_changes': changes
    })


@api.route('/assets/<int:asset_id>', methods=['PUT'])
@jwt_required()
@handle_errors('Failed to update asset')
def update_asset(asset_id):
    """Update an asset's fields."""
    data = _json_body()
    asset = _store().update_asset(_current_user(), asset_id, data)

    return jsonify({
        'message': 'Asset updated successfully',
        'asset': dict(asset.to_dict(), **asset_valuation(asset))
    })


@api.route('/assets/<int:asset_id>', methods=['DELETE'])
@jwt_required()
@handle_errors('Failed to delete asset')
def delete_asset(asset_id):
    """Delete an asset."""
    _store().delete_asset(_current_user(), asset_id)
    return jsonify({'message': 'Asset deleted successfully'})


@api.route('/assets/<int:asset_id>/price-history', methods=['GET'])
@jwt_required()
@handle_errors('Failed to get price history')
def get_asset_price_history(asset_id):
    """Prices recorded for an asset on each refresh, oldest first."""
    store = _store()
    user = _current_user()
    asset = store.get_asset(user, asset_id)
    history = store.price_history(user, asset_id)

    return jsonify({
        'asset_id': asset.id,
        'symbol': asset.symbol,
        'history': [entry.to_dict() for entry in history]
    })


# =============================================================================
# OCR / TEXT PARSING ENDPOINTS
# =============================================================================

@api.route('/ocr/process', methods=['POST'])
@jwt_required()
@handle_errors('Failed to process image')
def ocr_process():
    """Extract ISINs, quantities and prices from an uploaded image."""
    user = _current_user()
    content = _read_uploaded_image()

    try:
        text = _ocr().recognize_text(content)
    except OCRError as e:
        logger.warning("OCR failed: %s", e)
        return jsonify({
            'message': 'No text extracted',
            'error': 'No text extracted',
            'ocrResult': extract_holdings_fields('', OCR_CONFIDENCE).to_dict()
        })

    result = extract_holdings_fields(text, OCR_CONFIDENCE)
    _store().log_activity(user.id, 'ocr_process', {
        'filename': request.files['image'].filename,
        'isins': len(result.isins),
        'characters': len(text)
    })

    return jsonify({
        'message': 'Image processed successfully',
        'ocrResult': result.to_dict()
    })


@api.route('/ocr/process-text', methods=['POST'])
@jwt_required()
@handle_errors('Failed to process text')
def ocr_process_text():
    """Extract ISINs, quantities and prices from pasted text."""
    user = _current_user()
    data = request.get_json(silent=True) or {}
    text = data.get('text') if isinstance(data, dict) else None

    if not isinstance(text, str) or not text.strip():
        raise ValidationError('Text is required')

    result = extract_holdings_fields(text, MANUAL_CONFIDENCE)
    _store().log_activity(user.id, 'ocr_process_text', {
        'isins': len(result.isins),
        'characters': len(text)
    })

    return jsonify({
        'message': 'Text processed successfully',
        'ocrResult': result.to_dict()
    })


@api.route('/ocr/detect-assets', methods=['POST'])
@jwt_required()
@handle_errors('Failed to detect assets')
def ocr_detect_assets():
    """Detect candidate assets in an image or text without saving them."""
    user = _current_user()

    try:
        text, source = _read_statement_text()
    except OCRError as e:
        logger.warning("Asset detection OCR failed: %s", e)
        return jsonify({'assets': [], 'count': 0, 'text': '', 'error': 'No text extracted'})

    candidates = parse_assets(text, _symbols())
    _store().log_activity(user.id, 'detect_assets', {
        'source': source,
        'symbols': [c.symbol for c in candidates]
    })

    return jsonify({
        'assets': [c.to_dict() for c in candidates],
        'count': len(candidates),
        'text': text
    })


@api.route('/ocr/history', methods=['GET'])
@jwt_required()
@handle_errors('Failed to get OCR history')
def ocr_history():
    """Most recent OCR and import activity of the current user."""
    entries = _store().list_activity(_current_user().id, OCR_ACTIONS, limit=50)
    return jsonify({'history': [entry.to_dict() for entry in entries], 'count': len(entries)})


# =============================================================================
# DASHBOARD / ADMIN ENDPOINTS
# =============================================================================

@api.route('/stats', methods=['GET'])
@jwt_required()
@handle_errors('Failed to get stats')
def user_stats():
    """Totals across the current user's portfolios."""
    return jsonify(_store().user_stats(_current_user()))


@api.route('/admin/users', methods=['GET'])
@jwt_required()
@admin_required()
@handle_errors('Failed to list users')
def admin_list_users():
    """Paginated user list with optional email/name search."""
    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', 20, type=int)
    search = request.args.get('search', '').strip()

    return jsonify(_store().list_users(page=page, limit=limit, search=search))


@api.route('/admin/users/<int:user_id>/role', methods=['PUT'])
@jwt_required()
@admin_required()
@handle_errors('Failed to update role')
def admin_update_role(user_id):
    """Change a user's role."""
    data = _json_body()
    user = _store().update_user_role(user_id, data.get('role'))
    logger.info("User %s is now %s", user.email, user.role)

    return jsonify({
        'message': 'Role updated successfully',
        'user': user.to_dict()
    })


@api.route('/admin/users/<int:user_id>', methods=['DELETE'])
@jwt_required()
@admin_required()
@handle_errors('Failed to delete user')
def admin_delete_user(user_id):
    """Delete a user with their portfolios and activity."""
    _store().delete_user(_current_user(), user_id)
    return jsonify({'message': 'User deleted successfully'})


@api.route('/admin/portfolios', methods=['GET'])
@jwt_required()
@admin_required()
@handle_errors('Failed to list portfolios')
def admin_list_portfolios():
    """Every portfolio in the system with its owner and totals."""
    portfolios = _store().list_all_portfolios()

    rows = []
    for portfolio in portfolios:
        row = portfolio_valuation(portfolio, include_assets=False)
        row['owner_email'] = portfolio.owner.email
        rows.append(row)

    return jsonify({'portfolios': rows, 'count': len(rows)})


@api.route('/admin/stats', methods=['GET'])
@jwt_required()
@admin_required()
@handle_errors('Failed to get stats')
def admin_stats():
    """System-wide user, portfolio and asset totals."""
    return jsonify(_store().global_stats())


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def _register_error_handlers(app, jwt):
    @app.errorhandler(PortfolioError)
    def handle_portfolio_error(error):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(413)
    def handle_too_large(error):
        limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
        return jsonify({'error': f'File too large. Maximum size is {limit_mb}MB'}), 413

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def handle_internal_error(error):
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'error': f'Authentication required: {reason}'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({'error': f'Invalid token: {reason}'}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({'error': 'Token has expired'}), 401


def create_app(config_overrides=None, price_lookup=None, ocr_engine=None):
    """
    Build the Flask application.

    config_overrides are applied on top of Config. price_lookup and
    ocr_engine replace the Yahoo Finance and easyocr backed defaults.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    jwt = JWTManager(app)
    CORS(app)

    symbols_file = app.config.get('SYMBOLS_FILE')
    app.extensions['symbols'] = load_symbols(symbols_file) if symbols_file else DEFAULT_SYMBOLS
    app.extensions['price_lookup'] = price_lookup or PriceLookup(
        ttl=app.config['PRICE_CACHE_TTL'],
        timeout=app.config['PRICE_LOOKUP_TIMEOUT'],
        max_workers=app.config['PRICE_LOOKUP_WORKERS']
    )
    app.extensions['ocr_engine'] = ocr_engine or OCREngine(
        languages=app.config['OCR_LANGUAGES'],
        gpu=app.config['OCR_GPU']
    )

    app.register_blueprint(api)
    _register_error_handlers(app, jwt)

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()

    logger.info("Portfolio Tracker API ready (%d known symbols)", len(app.extensions['symbols']))
    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=True)
