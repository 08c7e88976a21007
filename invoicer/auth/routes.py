from flask import request, session, jsonify, current_app
from invoicer.auth import auth
from invoicer.auth.models import User
from invoicer.auth.decorators import login_required


@auth.route('/login', methods=['POST'])
def login():
    """Validate credentials and populate the session."""
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'error': 'BAD_REQUEST',
                        'message': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        # Deliberately vague — don't reveal which field was wrong
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'UNAUTHORIZED',
                        'message': 'Invalid username or password.'}), 401

    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value
    session.permanent  = True

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify({'id': user.id, 'name': user.name, 'role': user.role.value})


@auth.route('/logout')
def logout():
    session.clear()
    return jsonify({'message': 'Logged out.'})


@auth.route('/whoami')
@login_required
def whoami():
    return jsonify({'user_id': session['user_id'], 'role': session.get('role')})
