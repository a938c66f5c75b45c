from django.apps import AppConfig


class OrderingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "ordering"
    verbose_name = "Ordering"

    def ready(self):
        from ordering.config import ShopConfig
        from ordering.services.notifications import NotificationDispatcher, build_notifier

        self.shop_config = ShopConfig.from_settings()
        self.dispatcher = NotificationDispatcher(
            build_notifier(self.shop_config),
            workers=self.shop_config.notification_workers,
        )
