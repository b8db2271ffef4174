from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event, insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.engine import Engine
from datetime import datetime
import sqlite3
from errors import Conflict, InternalError
import logging

db = SQLAlchemy()
logger = logging.getLogger(__name__)

ISSUE_STATUSES = ('open', 'in_progress', 'done')
ISSUE_PRIORITIES = ('low', 'medium', 'high')


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite 預設不檢查 foreign key,cascade / set null 需要手動打開
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    # 關聯
    owned_projects = db.relationship('Project', back_populates='owner', lazy=True)

    def __repr__(self):
        return f'<User {self.id} {self.email}>'

# ============================================
# 2. OneTimePassword 模型 (密碼重設用)
# ============================================
class OneTimePassword(db.Model):
    __tablename__ = 'one_time_password'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    code = db.Column(db.String(12), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)

    def is_valid(self, now=None):
        """只有在 now < expires_at 時有效"""
        return (now or datetime.utcnow()) < self.expires_at

# ============================================
# 3. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    # 關聯
    owner = db.relationship('User', back_populates='owned_projects')
    issues = db.relationship('Issue', back_populates='project', lazy=True,
                             cascade='all,delete-orphan', passive_deletes=True)
    collaborators = db.relationship('ProjectCollaborator', back_populates='project', lazy=True,
                                    cascade='all,delete-orphan', passive_deletes=True)

    # 索引
    __table_args__ = (
        db.Index('idx_project_owner', 'owner_id'),
    )

    @property
    def collaborator_ids(self):
        return {c.user_id for c in self.collaborators}

# ============================================
# 4. ProjectCollaborator 模型 (Project <-> User)
# ============================================
class ProjectCollaborator(db.Model):
    __tablename__ = 'project_collaborator'

    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete='CASCADE'), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), primary_key=True)
    added_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    project = db.relationship('Project', back_populates='collaborators')
    user = db.relationship('User', backref=db.backref('collaborations', passive_deletes=True))

# ============================================
# 5. Issue 模型
# ============================================
class Issue(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='open')  # open, in_progress, done
    priority = db.Column(db.String(20), nullable=False, default='medium')  # low, medium, high

    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete='CASCADE'), nullable=False)

    # 時間欄位
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # 關聯
    project = db.relationship('Project', back_populates='issues')
    assignees = db.relationship('IssueAssignee', back_populates='issue', lazy=True,
                                cascade='all,delete-orphan', passive_deletes=True,
                                order_by='IssueAssignee.assigned_at')

    # 索引
    __table_args__ = (
        db.Index('idx_issue_project_status', 'project_id', 'status'),
        db.Index('idx_issue_created_at', 'created_at'),
    )

    @property
    def assignee_ids(self):
        return {a.user_id for a in self.assignees}

# ============================================
# 6. IssueAssignee 模型 (Issue <-> User)
# ============================================
class IssueAssignee(db.Model):
    __tablename__ = 'issue_assignee'

    issue_id = db.Column(db.Integer, db.ForeignKey('issue.id', ondelete='CASCADE'), primary_key=True)
    # 使用者被刪除時只移除指派,Issue 保留
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), primary_key=True)
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    issue = db.relationship('Issue', back_populates='assignees')
    user = db.relationship('User', backref=db.backref('issue_assignments', passive_deletes=True))

# ============================================
# Transaction 輔助函數
# ============================================

def commit_or_rollback(action):
    """
    commit 目前的 transaction,失敗就 rollback 並轉成 service 錯誤

    unique / foreign key 衝突 -> Conflict,其他資料庫錯誤 -> InternalError
    """
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"{action} conflict: {str(e.orig)}")
        raise Conflict(f'{action} conflicts with existing data')
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"{action} error: {str(e)}", exc_info=True)
        raise InternalError(f'{action} failed due to server error')


def insert_links(model, rows):
    """
    批次插入 join table (collaborator / assignee),primary key 已存在的直接略過

    另一個請求可能在我們讀取之後先插入同一筆,這種情況視為已完成,不算衝突
    """
    if not rows:
        return

    table = model.__table__
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        stmt = postgresql.insert(table).on_conflict_do_nothing()
    elif dialect == 'sqlite':
        stmt = sqlite.insert(table).on_conflict_do_nothing()
    else:
        # MySQL / MariaDB
        stmt = insert(table).prefix_with('IGNORE')

    db.session.execute(stmt, rows)
