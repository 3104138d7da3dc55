import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, DeleteMany, InsertOne, MongoClient, ReplaceOne
from pymongo.errors import PyMongoError

from constraints import TimeConstraint
from entities import TeacherSchedule

logger = logging.getLogger(__name__)


class _Session:
    def __init__(self, db):
        self._db = db
        self._added = []

    def add(self, obj):
        self._added.append(obj)

    def flush(self):
        ops = {}  # {collection_name: [operations]}

        for obj in list(self._added):
            coll_name = _get_collection_name(obj.__class__)
            if getattr(obj, 'id', None) is None:
                obj.id = get_next_id(self._db, coll_name)
            data = obj.to_dict()
            # _id is immutable once the document exists
            data.pop('_id', None)
            ops.setdefault(coll_name, []).append(ReplaceOne({'id': obj.id}, data, upsert=True))

        for coll_name, operations in ops.items():
            if operations:
                self._db[coll_name].bulk_write(operations, ordered=True)
                logger.debug("[PERSIST] %d operation(s) written to %s", len(operations), coll_name)

    def commit(self):
        self.flush()
        self._added.clear()

    def rollback(self):
        # No multi-document transactions, pending operations are just dropped
        self._added.clear()


class _DB:
    def __init__(self):
        self.client: Optional[MongoClient] = None
        self._db = None
        self._session = None

    def init_app(self, app):
        uri = app.config.get('MONGO_URI', 'mongodb://localhost:27017')
        dbname = app.config.get('MONGO_DBNAME', 'timetable')
        self.client = MongoClient(uri, serverSelectionTimeoutMS=8000)
        self._db = self.client[dbname]
        logger.info("[PERSIST] MongoDB database '%s' configured", dbname)

    @property
    def session(self) -> _Session:
        if self._session is None or self._session._db is not self._db:
            self._session = _Session(self._db)
        return self._session

    @property
    def is_ready(self) -> bool:
        return self._db is not None

    def create_all(self):
        if self._db is None:
            return
        try:
            self._db['schedule'].create_index([('teacher_id', ASCENDING)])
            self._db['timeconstraint'].create_index([('entity_type', ASCENDING), ('entity_id', ASCENDING)])
            self._db['timeconstraint'].create_index([('day', ASCENDING), ('period', ASCENDING)])
            logger.info("[PERSIST] Indexes created")
        except PyMongoError as e:
            logger.warning("[PERSIST] Index creation failed: %s", e)


db = _DB()


def _get_collection_name(cls):
    return getattr(cls, '__collection__', None) or cls.__name__.lower()


def get_next_id(mongo_db, name: str) -> int:
    counters = mongo_db['__counters__']
    res = counters.find_one_and_update({'_id': name}, {'$inc': {'seq': 1}}, upsert=True, return_document=True)
    return int(res['seq'])


class ModelMeta(type):
    def __getattr__(cls, item):
        # `Model.query` -> Query(model)
        if item == 'query':
            return Query(cls)
        raise AttributeError(item)


class Query:
    def __init__(self, model_cls):
        self.model_cls = model_cls
        self._filter = {}
        self._sort = None

    def _collection(self):
        if db._db is None:
            raise RuntimeError("Database is not initialised, call db.init_app(app) first")
        return db._db[_get_collection_name(self.model_cls)]

    def filter_by(self, **kwargs):
        self._filter.update(kwargs)
        return self

    def filter_in(self, field, values):
        self._filter[field] = {'$in': list(values)}
        return self

    def order_by(self, *fields):
        self._sort = [(name, ASCENDING) for name in fields] or None
        return self

    def all(self):
        cursor = self._collection().find(self._filter)
        if self._sort:
            cursor = cursor.sort(self._sort)
        return [self.model_cls(**doc) for doc in cursor]

    def first(self):
        doc = self._collection().find_one(self._filter)
        if not doc:
            return None
        return self.model_cls(**doc)


class BaseModel(metaclass=ModelMeta):
    def __init__(self, **kwargs):
        for k, v in kwargs.items():
            setattr(self, k, v)

    def to_dict(self) -> Dict[str, Any]:
        d = self.__dict__.copy()
        if '_id' in d and d['_id'] is not None:
            d['_id'] = str(d['_id'])
        return d


# --- Model definitions ---

class Schedule(BaseModel):
    """One document per teacher: the whole weekly grid."""

    def __init__(self, **kwargs):
        self.id = None
        self.teacher_id = None
        self.schedule = {}
        self.updated_at = None
        super().__init__(**kwargs)

    @classmethod
    def from_domain(cls, teacher_schedule: TeacherSchedule) -> "Schedule":
        data = teacher_schedule.to_dict()
        return cls(
            teacher_id=teacher_schedule.teacher_id,
            schedule=data['schedule'],
            updated_at=datetime.now(timezone.utc),
        )

    def to_domain(self) -> TeacherSchedule:
        return TeacherSchedule.from_dict({'teacherId': self.teacher_id, 'schedule': self.schedule})


class TimeConstraintRecord(BaseModel):
    __collection__ = 'timeconstraint'

    def __init__(self, **kwargs):
        self.id = None
        self.entity_type = None
        self.entity_id = None
        self.day = None
        self.period = None
        self.constraint_type = 'preferred'
        super().__init__(**kwargs)

    @classmethod
    def from_domain(cls, constraint: TimeConstraint) -> "TimeConstraintRecord":
        return cls(
            entity_type=constraint.entity_type,
            entity_id=constraint.entity_id,
            day=constraint.day,
            period=constraint.period,
            constraint_type=constraint.constraint_type,
        )

    def to_domain(self) -> TimeConstraint:
        return TimeConstraint(
            entity_type=self.entity_type,
            entity_id=str(self.entity_id),
            day=self.day,
            period=str(self.period),
            constraint_type=self.constraint_type,
        )


# --- Persistence helpers ---

def replace_teacher_schedules(schedules: Iterable[TeacherSchedule]) -> int:
    """Delete each teacher's stored grid and insert the new one.

    Teachers are written one at a time with an ordered bulk write, so a
    failure never leaves a teacher with both old and new entries.
    """
    if db._db is None:
        raise RuntimeError("Database is not initialised, call db.init_app(app) first")
    collection = db._db['schedule']
    written = 0
    for teacher_schedule in schedules:
        record = Schedule.from_domain(teacher_schedule)
        record.id = get_next_id(db._db, 'schedule')
        data = record.to_dict()
        data.pop('_id', None)
        try:
            collection.bulk_write(
                [DeleteMany({'teacher_id': record.teacher_id}), InsertOne(data)],
                ordered=True,
            )
        except Exception as e:
            logger.error("[PERSIST] Saving schedule of teacher %s failed: %s", record.teacher_id, e)
            raise
        written += 1
        logger.debug("[PERSIST] Schedule of teacher %s replaced", record.teacher_id)
    logger.info("[PERSIST] %d teacher schedule(s) saved", written)
    return written


def load_schedules(teacher_ids: Optional[Iterable[str]] = None) -> List[TeacherSchedule]:
    query = Schedule.query
    if teacher_ids is not None:
        query = query.filter_in('teacher_id', teacher_ids)
    return [record.to_domain() for record in query.order_by('teacher_id').all()]


def load_time_constraints(entity_type: Optional[str] = None, entity_id: Optional[str] = None) -> List[TimeConstraint]:
    query = TimeConstraintRecord.query
    if entity_type is not None:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=entity_id)
    return [record.to_domain() for record in query.all()]


def save_time_constraints(constraints: Iterable[TimeConstraint]) -> int:
    """Upsert constraint records through the session, one document per slot."""
    count = 0
    for constraint in constraints:
        existing = TimeConstraintRecord.query.filter_by(
            entity_type=constraint.entity_type,
            entity_id=constraint.entity_id,
            day=constraint.day,
            period=constraint.period,
        ).first()
        record = TimeConstraintRecord.from_domain(constraint)
        if existing is not None:
            record.id = existing.id
        db.session.add(record)
        count += 1
    db.session.commit()
    return count
