import structlog

from katamanager.document import ConfigStructureError

logger = structlog.get_logger(__name__)


class KataManager(object):
    '''
    Registers every configured runtime class with one runtime config,
    and removes them again. Each phase ends in a single save.
    '''

    def __init__(self, config, runtime, resolver):
        self.config = config
        self.runtime = runtime
        self.resolver = resolver
        self.installed = False

    def __repr__(self):
        names = [rc.name for rc in self.config.runtime_classes]
        return (
            f"<{self.__class__.__name__} runtime={self.runtime.backend!r} "
            f"runtime_classes={names!r}>"
        )

    def _save(self):
        n = self.runtime.save()
        if n == 0:
            logger.info('runtime_config_removed', path=self.runtime.path)
        else:
            logger.info('runtime_config_written', path=self.runtime.path, size=n)
        return n

    def install(self):
        for rc in self.config.runtime_classes:
            config_path = self.resolver.prepare(rc)
            self.runtime.add_runtime(rc.name, str(config_path), set_as_default=False)
            logger.info('runtime_class_added', runtime_class=rc.name)

        # Set before writing, an interrupted save still needs reverting
        self.installed = True
        return self._save()

    def revert(self):
        self.runtime.reload()

        for rc in self.config.runtime_classes:
            try:
                self.runtime.remove_runtime(rc.name)
            except ConfigStructureError:
                logger.error('runtime_class_revert_failed', runtime_class=rc.name)
                # Keep whatever was already removed
                try:
                    self._save()
                except OSError as e:
                    logger.error('runtime_config_save_failed', error=str(e))
                raise

        return self._save()
