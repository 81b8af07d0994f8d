from flask import Flask, jsonify, request

import db

app = Flask(__name__)
app.config.setdefault('DB_PATH', None)  # None = config.DB_PATH


def _db_path():
    return app.config.get('DB_PATH')


@app.route('/api/sessions')
def api_sessions():
    limit = request.args.get('limit', default=50, type=int)
    return jsonify(db.list_sessions(limit=limit, db_path=_db_path()))


@app.route('/api/sessions/<session_id>')
def api_session(session_id):
    report = db.get_session(session_id, db_path=_db_path())
    if report is None:
        return jsonify({'error': 'session not found', 'session_id': session_id}), 404
    return jsonify(report)


@app.route('/api/sessions/<session_id>/violations')
def api_session_violations(session_id):
    if db.get_session(session_id, db_path=_db_path()) is None:
        return jsonify({'error': 'session not found', 'session_id': session_id}), 404
    return jsonify(db.get_violations(session_id, db_path=_db_path()))


if __name__ == '__main__':
    db.init_db(_db_path())
    app.run(host='127.0.0.1', port=5500, debug=True)
