# ============================================
# 即時通知 (Socket.IO 廣播)
#
# 每個成功的寫入在 commit 之後廣播一次,所有連線中的 client 都會收到,
# 不管有沒有權限看那個專案。沒有 ack、沒有重送、不保證順序。
# ============================================

from flask import request
from extensions import socketio
import logging

logger = logging.getLogger(__name__)

# Issue 事件
ISSUE_CREATED = 'issue:created'
ISSUE_UPDATED = 'issue:updated'
ISSUE_ASSIGNED = 'issue:assigned'
ISSUE_UNASSIGNED = 'issue:unassigned'
ISSUE_DELETED = 'issue:deleted'

# Project 事件
PROJECT_CREATED = 'project:created'
PROJECT_DELETED = 'project:deleted'
PROJECT_COLLABORATORS_ADDED = 'project:collaborators_added'
PROJECT_COLLABORATORS_REMOVED = 'project:collaborators_removed'


class Broadcaster:
    """廣播介面,在建立 service 時注入"""

    def publish(self, event, payload):
        raise NotImplementedError


class NullBroadcaster(Broadcaster):
    """什麼都不做 (沒有即時通道時使用)"""

    def publish(self, event, payload):
        logger.debug(f"Dropped event {event}")


class SocketIOBroadcaster(Broadcaster):
    """
    透過 Flask-SocketIO 廣播給所有連線

    fire-and-forget: 廣播失敗只記錄,不影響已經 commit 的寫入
    """

    def __init__(self, socketio_server):
        self.socketio = socketio_server

    def publish(self, event, payload):
        try:
            self.socketio.emit(event, payload)
            logger.info(f"Broadcast {event}")
        except Exception as e:
            logger.error(f"Failed to broadcast {event}: {str(e)}", exc_info=True)

# ============================================
# Socket.IO 連線事件
# ============================================

@socketio.on('connect')
def handle_connect():
    logger.info(f"Socket connected: {request.sid}")


@socketio.on('disconnect')
def handle_disconnect(*args):
    logger.info(f"Socket disconnected: {request.sid}")
