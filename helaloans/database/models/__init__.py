from helaloans.database.models.user_model import User
from helaloans.database.models.loan_application_model import LoanApplication
from helaloans.database.models.payment_model import PaymentRecord
from helaloans.database.models.savings_model import SavingsBalance
from helaloans.database.models.audit_log_model import AuditLog
from helaloans.database.models.support_request_model import SupportRequest
