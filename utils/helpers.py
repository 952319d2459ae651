from flask import current_app, jsonify # For pagination limits from config and JSON responses.

def isoformat(value):
    """
    Formats a naive UTC datetime as an ISO-8601 string with a trailing 'Z'.

    Args:
        value (datetime or None): The datetime to format.

    Returns:
        str or None: e.g. "2025-09-15T06:56:25.000123Z", or None if value is None.
    """
    if value is None:
        return None
    return value.isoformat() + 'Z'

def _positive_int(raw, default):
    """Parses `raw` as an int >= 1, falling back to `default` for missing or malformed values."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default

def parse_pagination_args(request_args, default_per_page=None):
    """
    Reads 'page' and 'per_page' from request arguments.

    Malformed values fall back to defaults. page is at least 1 and per_page is
    clamped to [1, MAX_PER_PAGE].

    Args:
        request_args (werkzeug.datastructures.MultiDict or dict): Typically `request.args`.
        default_per_page (int, optional): Defaults to the ITEMS_PER_PAGE setting.

    Returns:
        tuple: (page, per_page)
    """
    if default_per_page is None:
        default_per_page = current_app.config.get('ITEMS_PER_PAGE', 15)
    max_per_page = current_app.config.get('MAX_PER_PAGE', 100)

    page = _positive_int(request_args.get('page'), 1)
    try:
        per_page = int(request_args.get('per_page'))
    except (TypeError, ValueError):
        per_page = default_per_page
    per_page = max(1, min(per_page, max_per_page))
    return page, per_page

def pagination_payload(pagination, serializer=None):
    """
    Shapes a Flask-SQLAlchemy Pagination object into the page envelope the frontend expects.

    Keys: data, current_page, last_page, per_page, total, from, to.
    'from' and 'to' are 1-based positions of the first and last record on the page,
    or None when the page is empty.

    Args:
        pagination (flask_sqlalchemy.pagination.Pagination): Result of `query.paginate(...)`.
        serializer (callable, optional): Converts each record to a dict. Defaults to `record.to_dict()`.

    Returns:
        dict: The pagination envelope.
    """
    serializer = serializer or (lambda record: record.to_dict())
    records = [serializer(record) for record in pagination.items]
    has_records = bool(records)
    return {
        'data': records,
        'current_page': pagination.page,
        'last_page': max(pagination.pages, 1), # An empty result still has one (empty) page.
        'per_page': pagination.per_page,
        'total': pagination.total,
        'from': pagination.first if has_records else None,
        'to': pagination.last if has_records else None,
    }

def validation_error_response(errors, message='Validation failed'):
    """
    Builds the 422 response used for every input validation failure.

    Args:
        errors (dict): Field name -> list of messages (e.g., `form.errors`).

    Returns:
        tuple: (flask.Response, 422)
    """
    return jsonify({'message': message, 'errors': errors}), 422
