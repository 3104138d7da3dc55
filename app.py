import json
import logging
import time

from flask import Flask, jsonify, request
from pydantic import ValidationError

from config import GenerationSettings, RuleSet, app_config
from conflicts import OccupancyIndex, check_slot_conflict
from constraints import EntityRef
from errors import StructuralError
from mapping import build_lesson_demands
from models import db, load_schedules, load_time_constraints, replace_teacher_schedules
from scheduler import ScheduleGenerator
from schemas import ConflictRequest, GenerateRequest, MappingRequest, ValidateRequest
from time_model import normalize_level
from validation import validate_schedule
from views import class_view


def _bad_request(error, status=400, **extra):
    body = {'success': False, 'error': error}
    body.update(extra)
    return jsonify(body), status


def _parse(model):
    """Validate the JSON body; returns (payload, None) or (None, error response)."""
    try:
        return model.model_validate(request.get_json(silent=True) or {}), None
    except ValidationError as e:
        return None, _bad_request('Invalid request payload', details=json.loads(e.json()))


def create_app(config=None):
    app = Flask(__name__)
    app.config.update(app_config())
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if app.config.get('MONGO_URI'):
        db.init_app(app)
        db.create_all()

    @app.before_request
    def before_request():
        request._start_time = time.time()

    @app.after_request
    def after_request(response):
        if hasattr(request, '_start_time'):
            elapsed = time.time() - request._start_time
            app.logger.info(f"[{request.remote_addr}] {request.method} {request.path} {elapsed:.3f}s")
            response.headers["X-Response-Time"] = f"{elapsed:.3f}s"
        return response

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'database': db.is_ready})

    @app.route('/schedule/mappings', methods=['POST'])
    def mappings():
        payload, error = _parse(MappingRequest)
        if error:
            return error
        teachers, classes, subjects, _ = payload.entities()
        try:
            outcome = build_lesson_demands(payload.selection.to_selection(), teachers, classes, subjects)
        except StructuralError as e:
            return _bad_request(str(e))
        return jsonify({
            'success': outcome.ok,
            'demands': [d.to_dict() for d in outcome.demands],
            'resolutionErrors': [e.to_dict() for e in outcome.errors],
        })

    @app.route('/schedule/generate', methods=['POST'])
    def generate():
        payload, error = _parse(GenerateRequest)
        if error:
            return error
        teachers, classes, subjects, constraints = payload.entities()

        try:
            outcome = build_lesson_demands(payload.selection.to_selection(), teachers, classes, subjects)
            rules = RuleSet.from_dict(payload.rules)
            settings = GenerationSettings.from_dict(payload.settings)
        except (StructuralError, ValueError) as e:
            return _bad_request(str(e))

        resolution_errors = [e.to_dict() for e in outcome.errors]
        if outcome.errors and not payload.allow_partial:
            return _bad_request(
                f"No suitable teacher for {len(outcome.errors)} subject(s)",
                status=409,
                resolutionErrors=resolution_errors,
            )

        if payload.persist and not db.is_ready:
            return _bad_request('Database is not configured (MONGO_URI)', status=503)

        try:
            if payload.existing_schedules is not None:
                existing = [s.to_entity() for s in payload.existing_schedules]
            elif db.is_ready:
                existing = load_schedules()
            else:
                existing = []
            if not constraints and db.is_ready:
                constraints = load_time_constraints()

            generator = ScheduleGenerator(rules=rules, settings=settings)
            result = generator.generate(
                outcome.drop_unresolved(), teachers, classes, subjects,
                constraints=constraints, existing_schedules=existing,
            )
            if not result.success:
                return _bad_request('; '.join(result.errors), resolutionErrors=resolution_errors)

            saved = 0
            if payload.persist and not result.cancelled:
                saved = replace_teacher_schedules(result.schedules)
        except Exception as e:
            app.logger.exception(f"Error generating schedule: {e}")
            return _bad_request(str(e), status=500)

        body = result.to_dict()
        body['resolutionErrors'] = resolution_errors
        body['demands'] = [d.to_dict() for d in result.demands]
        body['saved'] = saved
        return jsonify(body)

    @app.route('/schedule/validate', methods=['POST'])
    def validate():
        payload, error = _parse(ValidateRequest)
        if error:
            return error
        teachers, classes, subjects, constraints = payload.entities()
        try:
            rules = RuleSet.from_dict(payload.rules)
        except ValueError as e:
            return _bad_request(str(e))
        result = validate_schedule(
            payload.mode, payload.grid, payload.selected_id,
            [s.to_entity() for s in payload.all_schedules],
            teachers, classes, subjects, constraints, rules,
        )
        return jsonify(result.to_dict())

    @app.route('/schedule/conflict', methods=['POST'])
    def conflict():
        payload, error = _parse(ConflictRequest)
        if error:
            return error
        teachers, classes, subjects, _ = payload.entities()
        labels = {item.id: item.name for group in (teachers, classes, subjects) for item in group}
        target = EntityRef(payload.mode, payload.selected_id)
        counterpart = EntityRef.school_class(payload.counterpart_id) if target.is_teacher \
            else EntityRef.teacher(payload.counterpart_id)
        occupancy = OccupancyIndex.from_schedules(s.to_entity() for s in payload.schedules)
        check = check_slot_conflict(
            target, counterpart, payload.day, payload.period, occupancy,
            subject_id=payload.subject_id, labels=labels,
        )
        return jsonify(check.to_dict())

    @app.route('/schedule/classes/<class_id>')
    def class_schedule(class_id):
        if not db.is_ready:
            return _bad_request('Database is not configured (MONGO_URI)', status=503)
        levels = [normalize_level(level) for level in request.args.getlist('level')]
        if any(level is None for level in levels):
            return _bad_request('Unknown education level')
        try:
            grid = class_view(load_schedules(), class_id, levels=levels or None)
        except StructuralError as e:
            return _bad_request(str(e))
        return jsonify({
            'success': True,
            'classId': class_id,
            'schedule': {
                day: {period: (entry.to_dict() if entry else None) for period, entry in periods.items()}
                for day, periods in grid.items()
            },
        })

    return app


if __name__ == '__main__':
    create_app().run(debug=False)
