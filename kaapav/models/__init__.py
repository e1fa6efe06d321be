from kaapav.models.customer import Customer
from kaapav.models.chat import Chat
from kaapav.models.message import Message
from kaapav.models.conversation_state import ConversationState
from kaapav.models.cart import Cart
from kaapav.models.order import Order
from kaapav.models.product import Product
from kaapav.models.broadcast import Broadcast, BroadcastRecipient
from kaapav.models.quick_reply import QuickReply
from kaapav.models.label import Label
from kaapav.models.template import MessageTemplate
from kaapav.models.agent import Agent
from kaapav.models.setting import Setting
from kaapav.models.analytics_event import AnalyticsEvent
from kaapav.models.error_log import ErrorLog
from kaapav.models.kv_entry import KVEntry
