from flask import Blueprint, jsonify, request, g
from extensions import db
from models import LegalAcceptance, LegalDocumentType, enum_values
from utils import login_required, get_json_body, require_string, get_client_ip
from exceptions import ValidationError
from blueprints.loan_helpers import get_owned_loan

bp = Blueprint("legal", __name__, url_prefix="/api/legal")


@bp.route("/accept", methods=["POST"])
@login_required
def accept_document():
    data = get_json_body()
    document_type = data.get("documentType")
    if document_type not in enum_values(LegalDocumentType):
        raise ValidationError("Unknown documentType")
    version = require_string(data, "documentVersion", max_length=20, label="Document version")

    loan_id = data.get("loanApplicationId")
    if loan_id is not None:
        get_owned_loan(loan_id, g.user)

    acceptance = LegalAcceptance(
        user_id=g.user.id,
        loan_application_id=loan_id,
        document_type=document_type,
        document_version=version,
        ip_address=get_client_ip(),
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    )
    db.session.add(acceptance)
    db.session.commit()
    return jsonify({"success": True, "acceptance": acceptance.to_dict()}), 201


@bp.route("/accepted", methods=["GET"])
@login_required
def has_accepted():
    document_type = request.args.get("documentType")
    if document_type not in enum_values(LegalDocumentType):
        raise ValidationError("Unknown documentType")
    query = LegalAcceptance.query.filter_by(user_id=g.user.id, document_type=document_type)
    loan_id = request.args.get("loanApplicationId", type=int)
    if loan_id is not None:
        query = query.filter_by(loan_application_id=loan_id)
    return jsonify({"accepted": query.first() is not None}), 200


@bp.route("/mine", methods=["GET"])
@login_required
def my_acceptances():
    items = (LegalAcceptance.query
             .filter_by(user_id=g.user.id)
             .order_by(LegalAcceptance.created_at.desc(), LegalAcceptance.id.desc())
             .all())
    return jsonify({"acceptances": [a.to_dict() for a in items]}), 200
