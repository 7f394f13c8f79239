"""
Persistence layer for users, portfolios and assets.

PortfolioStore is constructed per request around a SQLAlchemy session.
Ownership is enforced here: a portfolio and its assets can only be read or
changed by their owner or by an admin.
"""

import logging
import math
from datetime import date

from sqlalchemy import func, or_

from errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from models import ROLES, Asset, Portfolio, PriceHistory, User, UserActivity, utcnow

logger = logging.getLogger('portfolio_tracker.store')

# =============================================================================
# FIELD VALIDATION
# =============================================================================

def _required_text(value, label, max_length=255):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f'{label} must be a string')
    text = (value or '').strip()
    if not text:
        raise ValidationError(f'{label} is required')
    if len(text) > max_length:
        raise ValidationError(f'{label} must be at most {max_length} characters')
    return text


def _optional_text(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError('Expected a string value')
    return value.strip() or None


def _number(value, label, allow_zero):
    if isinstance(value, bool):
        raise ValidationError(f'{label} must be a number')
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} must be a number')
    if not math.isfinite(number):
        raise ValidationError(f'{label} must be a number')
    if number < 0 or (number == 0 and not allow_zero):
        qualifier = 'non-negative' if allow_zero else 'positive'
        raise ValidationError(f'{label} must be {qualifier}')
    return number


def _purchase_date(value):
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError('Purchase date must be in YYYY-MM-DD format')


def _clean_asset_fields(data, partial=False):
    cleaned = {}

    if not partial or 'symbol' in data:
        cleaned['symbol'] = _required_text(data.get('symbol'), 'Symbol', max_length=16).upper()
    if 'name' in data:
        cleaned['name'] = _optional_text(data.get('name'))
    if not partial or 'quantity' in data:
        cleaned['quantity'] = _number(data.get('quantity'), 'Quantity', allow_zero=False)
    if not partial or 'purchase_price' in data:
        cleaned['purchase_price'] = _number(data.get('purchase_price', 0), 'Purchase price', allow_zero=True)
    if 'purchase_date' in data:
        cleaned['purchase_date'] = _purchase_date(data.get('purchase_date'))
    if 'isin' in data:
        isin = _optional_text(data.get('isin'))
        cleaned['isin'] = isin.upper() if isin else None
    if 'notes' in data:
        cleaned['notes'] = _optional_text(data.get('notes'))

    return cleaned


# =============================================================================
# VALUATION
# =============================================================================

def asset_valuation(asset):
    """
    Value an asset at its current price, falling back to the purchase
    price when no market price is known.
    """
    price_available = asset.current_price is not None
    price = asset.current_price if price_available else asset.purchase_price
    current_value = asset.quantity * (price or 0)
    purchase_value = asset.quantity * (asset.purchase_price or 0)
    gain_loss = current_value - purchase_value

    return {
        'current_value': round(current_value, 2),
        'purchase_value': round(purchase_value, 2),
        'gain_loss': round(gain_loss, 2),
        'gain_loss_percent': round(gain_loss / purchase_value * 100, 2) if purchase_value > 0 else 0,
        'priceAvailable': price_available,
    }


def _summarize(assets):
    total_value = 0.0
    total_cost = 0.0
    for asset in assets:
        valuation = asset_valuation(asset)
        total_value += valuation['current_value']
        total_cost += valuation['purchase_value']
    gain_loss = total_value - total_cost
    return {
        'total_value': round(total_value, 2),
        'total_cost': round(total_cost, 2),
        'total_gain_loss': round(gain_loss, 2),
        'total_gain_loss_percent': round(gain_loss / total_cost * 100, 2) if total_cost > 0 else 0,
    }


def portfolio_valuation(portfolio, include_assets=True):
    """Portfolio dict with totals and, optionally, each valued asset."""
    result = portfolio.to_dict()
    result.update(_summarize(portfolio.assets))
    result['asset_count'] = len(portfolio.assets)
    if include_assets:
        result['assets'] = [dict(asset.to_dict(), **asset_valuation(asset)) for asset in portfolio.assets]
    return result


# =============================================================================
# STORE
# =============================================================================

class PortfolioStore:
    """CRUD over users, portfolios, assets and activity for one session."""

    def __init__(self, session):
        self.session = session

    # -- users -----------------------------------------------------------------

    def create_user(self, email, password, name=None, role='user', bcrypt_rounds=12):
        email = email.strip().lower() if isinstance(email, str) else ''
        if not email or '@' not in email:
            raise ValidationError('Valid email is required')
        if not isinstance(password, str) or len(password) < 8:
            raise ValidationError('Password must be at least 8 characters')
        if role not in ROLES:
            raise ValidationError(f'Role must be one of: {", ".join(ROLES)}')
        if self.find_user_by_email(email):
            raise ConflictError('Email already registered')

        user = User(email=email, name=(name or '').strip() or None, role=role)
        user.set_password(password, rounds=bcrypt_rounds)
        self.session.add(user)
        self.session.commit()
        logger.info("Created %s account %s", role, email)
        return user

    def get_user(self, user_id):
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found')
        return user

    def find_user_by_email(self, email):
        if not isinstance(email, str):
            return None
        email = email.strip().lower()
        return self.session.query(User).filter_by(email=email).first()

    def record_login(self, user):
        user.last_login = utcnow()
        self.session.commit()

    def list_users(self, page=1, limit=20, search=''):
        """Users with their portfolio and asset counts, newest first."""
        page = max(1, int(page))
        limit = min(100, max(1, int(limit)))

        query = self.session.query(User)
        if search:
            pattern = f'%{search.strip()}%'
            query = query.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern)))

        total = query.count()
        users = query.order_by(User.created_at.desc(), User.id.desc()) \
            .offset((page - 1) * limit) \
            .limit(limit) \
            .all()

        rows = []
        for user in users:
            row = user.to_dict()
            row['portfolio_count'] = len(user.portfolios)
            row['asset_count'] = sum(len(p.assets) for p in user.portfolios)
            rows.append(row)

        return {
            'users': rows,
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if total else 0
            }
        }

    def update_user_role(self, user_id, role):
        if role not in ROLES:
            raise ValidationError(f'Role must be one of: {", ".join(ROLES)}')
        user = self.get_user(user_id)
        user.role = role
        self.session.commit()
        return user

    def delete_user(self, requester, user_id):
        if requester.id == user_id:
            raise ValidationError('You cannot delete your own account')
        user = self.get_user(user_id)
        self.session.delete(user)
        self.session.commit()
        logger.info("Deleted user %s", user.email)

    # -- portfolios --------------------------------------------------------------

    def _check_owner(self, requester, portfolio):
        if portfolio.user_id != requester.id and not requester.is_admin:
            raise PermissionDeniedError('You do not have access to this portfolio')

    def create_portfolio(self, owner, name, description=None):
        portfolio = Portfolio(
            user_id=owner.id,
            name=_required_text(name, 'Portfolio name'),
            description=_optional_text(description)
        )
        self.session.add(portfolio)
        self.session.commit()
        return portfolio

    def list_portfolios(self, owner):
        return self.session.query(Portfolio).filter_by(user_id=owner.id) \
            .order_by(Portfolio.updated_at.desc(), Portfolio.id.desc()) \
            .all()

    def list_all_portfolios(self):
        return self.session.query(Portfolio).order_by(Portfolio.created_at.desc(), Portfolio.id.desc()).all()

    def get_portfolio(self, requester, portfolio_id):
        portfolio = self.session.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise NotFoundError('Portfolio not found')
        self._check_owner(requester, portfolio)
        return portfolio

    def update_portfolio(self, requester, portfolio_id, data):
        portfolio = self.get_portfolio(requester, portfolio_id)

        if 'name' in data:
            portfolio.name = _required_text(data['name'], 'Portfolio name')
        if 'description' in data:
            portfolio.description = _optional_text(data['description'])

        self.session.commit()
        return portfolio

    def delete_portfolio(self, requester, portfolio_id):
        portfolio = self.get_portfolio(requester, portfolio_id)
        self.session.delete(portfolio)
        self.session.commit()

    # -- assets ------------------------------------------------------------------

    def list_assets(self, requester, portfolio_id):
        return self.get_portfolio(requester, portfolio_id).assets

    def get_asset(self, requester, asset_id):
        asset = self.session.get(Asset, asset_id)
        if asset is None:
            raise NotFoundError('Asset not found')
        self._check_owner(requester, asset.portfolio)
        return asset

    def create_asset(self, requester, portfolio_id, data):
        portfolio = self.get_portfolio(requester, portfolio_id)
        fields = _clean_asset_fields(data)
        if not fields.get('name'):
            fields['name'] = f"{fields['symbol']} Inc."

        asset = Asset(portfolio_id=portfolio.id, **fields)
        self.session.add(asset)
        self.session.commit()
        return asset

    def update_asset(self, requester, asset_id, data):
        asset = self.get_asset(requester, asset_id)
        fields = _clean_asset_fields(data, partial=True)
        if 'name' in fields and not fields['name']:
            fields['name'] = f"{fields.get('symbol', asset.symbol)} Inc."

        for key, value in fields.items():
            setattr(asset, key, value)
        self.session.commit()
        return asset

    def delete_asset(self, requester, asset_id):
        asset = self.get_asset(requester, asset_id)
        self.session.delete(asset)
        self.session.commit()

    def add_candidates(self, requester, portfolio_id, candidates, prices=None):
        """Persist detected CandidateAsset records as assets of a portfolio."""
        portfolio = self.get_portfolio(requester, portfolio_id)
        prices = prices or {}
        created = []

        for candidate in candidates:
            current_price = prices.get(candidate.symbol)
            asset = Asset(
                portfolio_id=portfolio.id,
                symbol=candidate.symbol,
                name=candidate.name,
                quantity=candidate.quantity,
                purchase_price=candidate.purchase_price,
                current_price=current_price
            )
            if current_price is not None:
                asset.price_history.append(PriceHistory(price=current_price))
            self.session.add(asset)
            created.append(asset)

        self.session.commit()
        return created

    def apply_prices(self, assets, prices):
        """
        Store refreshed prices on assets. Symbols without a price keep their
        previous current_price. Returns (updated_symbols, unavailable_symbols).
        """
        updated = set()
        unavailable = set()

        for asset in assets:
            price = prices.get(asset.symbol.upper())
            if price is None:
                unavailable.add(asset.symbol)
                continue
            asset.current_price = price
            asset.price_history.append(PriceHistory(price=price))
            updated.add(asset.symbol)

        self.session.commit()
        return sorted(updated), sorted(unavailable)

    def price_history(self, requester, asset_id):
        """Recorded prices for an asset the requester owns, oldest first."""
        asset = self.get_asset(requester, asset_id)
        return (self.session.query(PriceHistory)
                .filter_by(asset_id=asset.id)
                .order_by(PriceHistory.recorded_at, PriceHistory.id)
                .all())

    # -- activity ----------------------------------------------------------------

    def log_activity(self, user_id, action, details=None):
        activity = UserActivity(user_id=user_id, action=action, details=details or {})
        self.session.add(activity)
        self.session.commit()
        return activity

    def list_activity(self, user_id, actions=None, limit=50):
        query = self.session.query(UserActivity).filter_by(user_id=user_id)
        if actions:
            query = query.filter(UserActivity.action.in_(actions))
        return query.order_by(UserActivity.created_at.desc(), UserActivity.id.desc()).limit(limit).all()

    # -- stats -------------------------------------------------------------------

    def user_stats(self, user):
        portfolios = self.list_portfolios(user)
        assets = [asset for portfolio in portfolios for asset in portfolio.assets]
        stats = {
            'total_portfolios': len(portfolios),
            'total_assets': len(assets),
        }
        stats.update(_summarize(assets))
        return stats

    def global_stats(self):
        stats = {
            'total_users': self.session.query(func.count(User.id)).scalar(),
            'total_admins': self.session.query(func.count(User.id)).filter(User.role == 'admin').scalar(),
            'total_portfolios': self.session.query(func.count(Portfolio.id)).scalar(),
            'total_assets': self.session.query(func.count(Asset.id)).scalar(),
        }
        stats.update(_summarize(self.session.query(Asset).all()))
        return stats
