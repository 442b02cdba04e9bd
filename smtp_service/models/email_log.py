from smtp_service.extensions import db


class EmailLog(db.Model):
    __tablename__ = "email_logs"

    id = db.Column(db.String(36), primary_key=True)  # uuid4, assigned by the store
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    status = db.Column(db.Text, nullable=True, index=True)  # success|failed|canceled|spam|queued|other
    recipient = db.Column(db.Text, nullable=True)
    sender = db.Column(db.Text, nullable=True)
    subject = db.Column(db.Text, nullable=True)
    provider = db.Column(db.Text, nullable=True)
    response = db.Column(db.Text, nullable=True)
    error = db.Column(db.JSON, nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} to={self.recipient} status={self.status}>"
