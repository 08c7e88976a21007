import os
from invoicer import create_app, db

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# Tables are created on startup; schema changes beyond new tables go
# through the standalone migration scripts.
if os.environ.get('AUTO_CREATE_TABLES', 'true').lower() == 'true':
    with app.app_context():
        db.create_all()

if __name__ == "__main__":
    app.run()
