from affiliate_engine.notifications.senders.base import DeliveryResult, PostbackSender
from affiliate_engine.notifications.senders.http import TemplatePostbackSender
