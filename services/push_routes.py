"""Device registration and push send routes extracted from app.py for readability."""
from backend.push_dispatcher import PLATFORM_IOS, send_push_to_user
from backend.voip_dispatcher import send_call_push
from services.validation_service import clean_token, normalize_platform


def api_register_device():
    import app as a

    DeviceRegistration = a.DeviceRegistration
    app = a.app
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    utcnow = a.utcnow

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    platform = normalize_platform(data.get('platform'))
    token = clean_token(data.get('token'))
    voip_token = clean_token(data.get('voip_token'))
    if not platform:
        return jsonify({'error': 'platform must be ios or android'}), 400
    if not token and not voip_token:
        app.logger.warning("Device register missing tokens for user %s platform %s", user.id, platform)
        return jsonify({'error': 'token required'}), 400
    if voip_token and platform != PLATFORM_IOS:
        return jsonify({'error': 'voip_token is only valid for ios'}), 400

    # Last write wins for a (user, platform) pair
    registration = DeviceRegistration.query.filter_by(user_id=user.id, platform=platform).first()
    if not registration:
        registration = DeviceRegistration(user_id=user.id, platform=platform)
        db.session.add(registration)
    if token:
        registration.token = token
    if voip_token:
        registration.voip_token = voip_token
    registration.updated_at = utcnow()
    db.session.commit()
    app.logger.info("Registered %s device for user %s (voip=%s)", platform, user.id, bool(registration.voip_token))
    return jsonify(registration.to_dict())


def api_list_devices():
    import app as a

    DeviceRegistration = a.DeviceRegistration
    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    registrations = DeviceRegistration.query.filter_by(user_id=user.id).all()
    return jsonify([r.to_dict() for r in registrations])


def api_delete_device(platform):
    import app as a

    DeviceRegistration = a.DeviceRegistration
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    platform = normalize_platform(platform)
    if not platform:
        return jsonify({'error': 'platform must be ios or android'}), 400
    deleted = DeviceRegistration.query.filter_by(user_id=user.id, platform=platform).delete()
    db.session.commit()
    return jsonify({'deleted': deleted})


def api_push_test():
    import app as a

    app = a.app
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    push_settings = a.push_settings

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    results = send_push_to_user(
        user.id,
        'Test push',
        'This is a test push notification.',
        {'type': 'test'},
        settings=push_settings(),
        logger=app.logger,
    )
    return jsonify({
        'sent': sum(1 for r in results if r.success),
        'results': [r.to_dict() for r in results],
    })


def api_push_send():
    """Internal fan-out endpoint for other services; guarded by the cron secret."""
    import app as a

    app = a.app
    cron_authorized = a.cron_authorized
    jsonify = a.jsonify
    push_settings = a.push_settings
    request = a.request

    if not cron_authorized():
        return jsonify({'error': 'Unauthorized'}), 401
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    title = data.get('title')
    if not user_id or not title:
        return jsonify({'error': 'user_id and title required'}), 400
    extra = data.get('data') or {}
    if not isinstance(extra, dict):
        return jsonify({'error': 'data must be an object'}), 400

    results = send_push_to_user(
        str(user_id),
        title,
        data.get('body') or '',
        extra,
        settings=push_settings(),
        logger=app.logger,
    )
    return jsonify({
        'success': any(r.success for r in results),
        'results': [r.to_dict() for r in results],
    })


def api_push_voip():
    import app as a

    DeviceRegistration = a.DeviceRegistration
    app = a.app
    cron_authorized = a.cron_authorized
    jsonify = a.jsonify
    push_settings = a.push_settings
    request = a.request

    if not cron_authorized():
        return jsonify({'error': 'Unauthorized'}), 401
    data = request.get_json(silent=True) or {}
    event_id = data.get('event_id')
    title = data.get('title')
    if not event_id or not title:
        return jsonify({'error': 'event_id and title required'}), 400

    voip_token = clean_token(data.get('voip_token'))
    if not voip_token and data.get('user_id'):
        registration = DeviceRegistration.query.filter_by(
            user_id=str(data['user_id']), platform=PLATFORM_IOS
        ).first()
        voip_token = registration.voip_token if registration else None

    result = send_call_push(
        voip_token,
        str(event_id),
        title,
        time=data.get('time'),
        location=data.get('location'),
        emoji=data.get('emoji'),
        settings=push_settings(),
        logger=app.logger,
    )
    if result.success:
        return jsonify(result.to_dict())
    if result.skipped:
        return jsonify(result.to_dict()), 404
    if result.status_code is None:
        return jsonify(result.to_dict()), 500
    return jsonify(result.to_dict()), 502
