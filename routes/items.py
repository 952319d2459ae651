from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from sqlalchemy import or_

from forms import StoreItemForm, UpdateItemForm
from models.item import Item
from extensions import db
from utils.helpers import parse_pagination_args, pagination_payload, validation_error_response

# Blueprint for item CRUD. Every route requires a bearer token and only ever
# touches items owned by the authenticated user.
items_bp = Blueprint('items', __name__)

# Columns the listing may be sorted by.
SORTABLE_COLUMNS = {
    'created_at': Item.created_at,
    'name': Item.name,
    'price': Item.price,
}

def _get_own_item(item_id):
    """The current user's item with this ID, or None (also for other users' items)."""
    return Item.query.filter_by(id=item_id, user_id=current_user.id).first()

def _item_not_found():
    return jsonify({'message': 'Item not found'}), 404

@items_bp.route('/items', methods=['GET'])
@login_required
def list_items():
    """
    Paginated listing of the current user's items.

    Query parameters:
        page, per_page: pagination (per_page is clamped to MAX_PER_PAGE).
        search: case-insensitive match against name and description.
        sort: created_at (default), name or price. Unknown values fall back to created_at.
        direction: asc or desc (default).
    """
    page, per_page = parse_pagination_args(request.args)
    query = Item.query.filter_by(user_id=current_user.id)

    search = (request.args.get('search') or '').strip()
    if search:
        # % and _ in the search text are literal characters, not wildcards.
        escaped = search.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
        pattern = f'%{escaped}%'
        query = query.filter(or_(Item.name.ilike(pattern, escape='\\'), Item.description.ilike(pattern, escape='\\')))

    column = SORTABLE_COLUMNS.get(request.args.get('sort'), Item.created_at)
    direction = (request.args.get('direction') or 'desc').lower()
    ordering = column.asc() if direction == 'asc' else column.desc()
    # Tie-break on id so pages are stable when many rows share a sort value.
    tiebreak = Item.id.asc() if direction == 'asc' else Item.id.desc()

    pagination = query.order_by(ordering, tiebreak).paginate(page=page, per_page=per_page, error_out=False)
    return jsonify(pagination_payload(pagination))

@items_bp.route('/items', methods=['POST'])
@login_required
def create_item():
    form = StoreItemForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    item = Item(
        name=form.name.data,
        description=form.description.data,
        price=form.price.data,
        user_id=current_user.id,
    )
    try:
        db.session.add(item)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating item for user {current_user.id}: {e}", exc_info=True)
        return jsonify({'message': 'Failed to create item', 'error': 'An unexpected error occurred.'}), 500

    current_app.logger.info(f"Item {item.id} created by user {current_user.id}.")
    return jsonify(item.to_dict()), 201

@items_bp.route('/items/<int:item_id>', methods=['GET'])
@login_required
def get_item(item_id):
    item = _get_own_item(item_id)
    if item is None:
        return _item_not_found()
    return jsonify(item.to_dict())

@items_bp.route('/items/<int:item_id>', methods=['PUT', 'PATCH'])
@login_required
def update_item(item_id):
    """Partial update: fields missing from the payload are left unchanged."""
    item = _get_own_item(item_id)
    if item is None:
        return _item_not_found()

    form = UpdateItemForm()
    if not form.validate_on_submit():
        return validation_error_response(form.errors)

    # Only fields present in the request body are applied; price may be explicitly cleared with null.
    for field in (form.name, form.description, form.price):
        if field.raw_data:
            setattr(item, field.name, field.data)

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating item {item_id}: {e}", exc_info=True)
        return jsonify({'message': 'Failed to update item', 'error': 'An unexpected error occurred.'}), 500

    current_app.logger.info(f"Item {item.id} updated by user {current_user.id}.")
    return jsonify(item.to_dict())

@items_bp.route('/items/<int:item_id>', methods=['DELETE'])
@login_required
def delete_item(item_id):
    item = _get_own_item(item_id)
    if item is None:
        return _item_not_found()

    try:
        db.session.delete(item)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting item {item_id}: {e}", exc_info=True)
        return jsonify({'message': 'Failed to delete item', 'error': 'An unexpected error occurred.'}), 500

    current_app.logger.info(f"Item {item_id} deleted by user {current_user.id}.")
    return jsonify({'message': 'Item deleted successfully'})
