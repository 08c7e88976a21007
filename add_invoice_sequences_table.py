"""
Create the invoice_sequences table and backfill one counter row per
business from the highest invoice number it already issued.

Safe to re-run: existing counters are only ever moved forward.
"""
from invoicer import create_app, db
from invoicer.businesses.models import Business
from invoicer.invoicing.models import InvoiceSequence
from invoicer.invoicing.sequence import highest_existing_sequence, format_invoice_number

app = create_app()

with app.app_context():
    print("Creating 'invoice_sequences' table...")
    inspector = db.inspect(db.engine)
    if not inspector.has_table('invoice_sequences'):
        InvoiceSequence.__table__.create(db.engine)
        print("Created 'invoice_sequences' table.")
    else:
        print("'invoice_sequences' table already exists.")

    for (business_id,) in db.session.query(Business.id).order_by(Business.id).all():
        highest = highest_existing_sequence(db.session, business_id)
        row = db.session.get(InvoiceSequence, business_id)
        if row is None:
            db.session.add(InvoiceSequence(business_id=business_id, last_seq=highest))
        elif row.last_seq < highest:
            row.last_seq = highest
        else:
            continue
        print(f"Business {business_id}: next invoice {format_invoice_number(highest + 1)}")

    db.session.commit()
    print("Migration complete!")
