import os
import re
import shutil
import sqlite3
import logging
from datetime import datetime, timedelta, timezone

from exceptions import DatabaseException, NotFoundException, ValidationException
from utils import now_utc

logger = logging.getLogger('main')

TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'
BACKUP_NAME = re.compile(
    r'^backup_(?P<type>[a-z]+)_(?P<timestamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:_\d+)?\.db$'
)


class BackupManager:
    """Timestamped copies of the SQLite database"""

    def __init__(self, db_path, backup_dir):
        self.db_path = os.path.abspath(db_path)
        self.backup_dir = os.path.abspath(backup_dir)
        os.makedirs(self.backup_dir, exist_ok=True)

    def _path_for(self, name):
        if not name or os.path.basename(name) != name or not BACKUP_NAME.match(name):
            raise ValidationException(f"Invalid backup name: {name}")
        return os.path.join(self.backup_dir, name)

    def _describe(self, name):
        path = os.path.join(self.backup_dir, name)
        match = BACKUP_NAME.match(name)
        stat = os.stat(path)
        created = datetime.strptime(match.group('timestamp'), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        return {
            'name': name,
            'path': path,
            'size': stat.st_size,
            'type': match.group('type'),
            'created_at': created.isoformat(),
        }

    def create_backup(self, backup_type='manual'):
        """Copy the database to backup_<type>_<timestamp>.db and return its description"""
        if not re.match(r'^[a-z]+$', backup_type or ''):
            raise ValidationException(f"Invalid backup type: {backup_type}")
        if not os.path.exists(self.db_path):
            raise DatabaseException(f"Database file not found: {self.db_path}")

        timestamp = now_utc().strftime(TIMESTAMP_FORMAT)
        name = f'backup_{backup_type}_{timestamp}.db'
        suffix = 1
        while os.path.exists(os.path.join(self.backup_dir, name)):
            name = f'backup_{backup_type}_{timestamp}_{suffix}.db'
            suffix += 1
        target = os.path.join(self.backup_dir, name)

        # sqlite's online backup includes pages still sitting in the WAL
        source = sqlite3.connect(self.db_path)
        try:
            destination = sqlite3.connect(target)
            try:
                source.backup(destination)
            finally:
                destination.close()
        except sqlite3.Error as e:
            if os.path.exists(target):
                os.remove(target)
            raise DatabaseException(f"Backup failed: {e}")
        finally:
            source.close()

        backup = self._describe(name)
        logger.info(f"Database backup created: {name} ({backup['size']} bytes)")
        return backup

    def list_backups(self):
        """All backups, newest first"""
        backups = [
            self._describe(filename)
            for filename in os.listdir(self.backup_dir)
            if BACKUP_NAME.match(filename) and os.path.isfile(os.path.join(self.backup_dir, filename))
        ]
        backups.sort(key=lambda b: (b['created_at'], b['name']), reverse=True)
        return backups

    def delete_backup(self, name):
        path = self._path_for(name)
        if not os.path.exists(path):
            raise NotFoundException(f"Backup {name} not found")
        os.remove(path)
        logger.info(f"Backup deleted: {name}")
        return True

    def restore_backup(self, name):
        """Replace the database with a backup, keeping a .pre-restore-<timestamp> copy of the current file.

        Callers must dispose open database connections first.
        """
        path = self._path_for(name)
        if not os.path.exists(path):
            raise NotFoundException(f"Backup {name} not found")

        safety_backup = None
        if os.path.exists(self.db_path):
            safety_backup = f"{self.db_path}.pre-restore-{now_utc().strftime(TIMESTAMP_FORMAT)}"
            shutil.copy2(self.db_path, safety_backup)
            logger.info(f"Created safety backup: {safety_backup}")

        shutil.copy2(path, self.db_path)
        # A stale WAL would be replayed over the restored file
        for leftover in (f"{self.db_path}-wal", f"{self.db_path}-shm"):
            if os.path.exists(leftover):
                os.remove(leftover)

        logger.info(f"Restored {name} to {self.db_path}")
        return {'restored': name, 'safety_backup': safety_backup}

    def cleanup_old_backups(self, retention_days=30, keep_minimum=3):
        """Delete automatic backups older than `retention_days`, always keeping the newest `keep_minimum`"""
        automatic = [b for b in self.list_backups() if b['type'] == 'automatic']
        cutoff = now_utc() - timedelta(days=retention_days)

        deleted = 0
        for backup in automatic[keep_minimum:]:
            if datetime.fromisoformat(backup['created_at']) >= cutoff:
                continue
            try:
                os.remove(backup['path'])
                deleted += 1
                logger.info(f"Removed old backup: {backup['name']}")
            except OSError as e:
                logger.error(f"Failed to remove old backup {backup['name']}: {e}")

        logger.info(f"Backup cleanup removed {deleted} backups (retention {retention_days} days, keep {keep_minimum})")
        return deleted

    def get_backup_stats(self):
        backups = self.list_backups()
        by_type = {}
        for backup in backups:
            by_type[backup['type']] = by_type.get(backup['type'], 0) + 1
        return {
            'backup_dir': self.backup_dir,
            'total_backups': len(backups),
            'total_size': sum(b['size'] for b in backups),
            'by_type': by_type,
            'latest': backups[0] if backups else None,
            'oldest': backups[-1] if backups else None,
        }
