from smtp_service.extensions import db


class EmailTemplate(db.Model):
    __tablename__ = "email_templates"

    id = db.Column(db.Text, primary_key=True)  # normalized id; PK enforces create-if-absent
    name = db.Column(db.Text, nullable=False)
    subject = db.Column(db.Text, nullable=False)
    html = db.Column(db.Text, nullable=False)
    defaults = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<EmailTemplate id={self.id!r} name={self.name!r}>"
