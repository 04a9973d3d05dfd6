from .db import db
from .academy import Academy
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .login_session import LoginSession
from .location import Location
from .availability import Availability
from .booking import Booking
from .booking_request import BookingRequest
from .cancellation_history import CancellationHistory
from .wallet import WalletAccount, WalletCredit
